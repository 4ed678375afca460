"""
Contracts Module

Immutable types shared by the server, the narration adapter and the client.
No layer may import implementation details from another layer; they meet
here.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Errors are data (ErrorCode / Error / StorageWriteResult)
3. All timestamps use UTC
"""

from .base import (
    ErrorCode, Error, StorageWriteResult, Timestamp, is_valid_stack_id,
)
from .activity import (
    Activity, ActivityVersion, FileStat, PatchArtifact, SessionMetadata,
)
from .events import StreamEvent, StreamEventType, encode_sse

__all__ = [
    'ErrorCode', 'Error', 'StorageWriteResult', 'Timestamp', 'is_valid_stack_id',
    'Activity', 'ActivityVersion', 'FileStat', 'PatchArtifact', 'SessionMetadata',
    'StreamEvent', 'StreamEventType', 'encode_sse',
]
