"""
Storage Layer

RESPONSIBILITY: Persist print stacks and custom tones on local disk
ALLOWED INPUTS: PrintStack, Tone
OUTPUTS: StorageWriteResult, hydrated PrintStacks

WHAT THIS LAYER MUST NOT DO:
============================
- Generate or alter narration
- Reorder or drop activities of a stack
- Overwrite a stack whose stored status is complete

BOUNDARY ENFORCEMENT:
=====================
- Complete stacks accept presentation merges only (merge_versions)
- Every stack id is validated before it becomes a path
- No file locks; write contention is the client saver's concern
"""

from .print_stack import PrintStackStore
from .tones import Tone, ToneStore

__all__ = ['PrintStackStore', 'Tone', 'ToneStore']
