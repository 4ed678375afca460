"""
Client State Layer

Responsibility:
Client-side state of a viewed session and its persistence.

PRINCIPLES:
1. One consumer per viewed session
2. Presentation changes go through the version cache, never around it
3. Writes are debounced; at most one is in flight
"""

from .persistence import DEFAULT_DELAY_SECONDS, DebouncedSaver
from .stream import (
    CONNECTION_LOST, ClientStreamConsumer, ConsumerState, ReconcileMode, activity_from_event,
)

__all__ = [
    'DEFAULT_DELAY_SECONDS', 'DebouncedSaver',
    'CONNECTION_LOST', 'ClientStreamConsumer', 'ConsumerState', 'ReconcileMode', 'activity_from_event',
]
