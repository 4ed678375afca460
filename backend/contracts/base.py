"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Layers may import types but MUST NOT modify this module
- All types are frozen dataclasses for immutability guarantee
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from enum import Enum, auto
import re


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Source errors
    SESSION_NOT_FOUND = auto()
    SOURCE_UNREACHABLE = auto()
    MALFORMED_ACTIVITY = auto()

    # Storage errors
    INVALID_STACK_ID = auto()
    STACK_NOT_FOUND = auto()
    STACK_IMMUTABLE = auto()
    TIMELINE_MISMATCH = auto()
    WRITE_FAILED = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and returned.
    """
    code: ErrorCode
    message: str
    timestamp: datetime

    @staticmethod
    def create(code: ErrorCode, message: str) -> Error:
        return Error(code=code, message=message, timestamp=datetime.now(timezone.utc))


@dataclass(frozen=True)
class StorageWriteResult:
    """Outcome of a single document write."""
    success: bool
    stack_id: Optional[str] = None
    error: Optional[Error] = None

    @staticmethod
    def ok(stack_id: str) -> StorageWriteResult:
        return StorageWriteResult(success=True, stack_id=stack_id)

    @staticmethod
    def failure(code: ErrorCode, message: str, stack_id: Optional[str] = None) -> StorageWriteResult:
        return StorageWriteResult(
            success=False,
            stack_id=stack_id,
            error=Error.create(code, message)
        )


# =============================================================================
# IDENTITY RULES
# =============================================================================

_STACK_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def is_valid_stack_id(stack_id: Optional[str]) -> bool:
    """
    Stack ids name files on disk.

    Alphanumerics, underscore and hyphen only: no dots, no slashes.
    """
    if not stack_id or not isinstance(stack_id, str):
        return False
    return _STACK_ID_PATTERN.match(stack_id) is not None


# =============================================================================
# TEMPORAL TYPES
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time.
    """
    value: datetime

    def __post_init__(self):
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    @staticmethod
    def from_iso(iso_string: str) -> Timestamp:
        dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return Timestamp(value=dt)

    def to_iso(self) -> str:
        return self.value.isoformat()


def sort_key_for_iso(iso_string: Optional[str]) -> float:
    """Epoch seconds for most-recent-first ordering; unparseable or missing values sort last."""
    if not iso_string:
        return float("-inf")
    try:
        return Timestamp.from_iso(iso_string).value.timestamp()
    except ValueError:
        return float("-inf")
