"""
Temporal Layer
==============

Timeline state for session viewing runs.

INVARIANTS:
- Every version mapping is addressed by version_key(tone, model)
- At most one open run per session id
- A complete stack never becomes streaming again; continuing forks it

Modules:
- versioning: version key and per-activity version cache
- registry: open stream runs and their cancellation tokens
- stack: processed activities and print stacks
"""

from .versioning import VersionCache, version_key
from .registry import CancellationToken, SessionRegistry, SessionRun
from .stack import PrintStack, ProcessedActivity, StackStatus, StackType, new_stack_id

__all__ = [
    'VersionCache',
    'version_key',
    'CancellationToken',
    'SessionRegistry',
    'SessionRun',
    'PrintStack',
    'ProcessedActivity',
    'StackStatus',
    'StackType',
    'new_stack_id',
]
