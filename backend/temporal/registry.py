"""
Session Registry
================

In-memory mapping from session id to the currently open stream run.

CONCURRENCY:
============
All access happens on the event loop that serves the HTTP layer.
No locks: there is never parallel mutation of the mapping.

INVARIANTS:
- At most one SessionRun per session id
- create() cancels the run it replaces
- remove() and cancel() are idempotent
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional
import asyncio
import logging


logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation signal for a single run."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class SessionRun:
    """Ephemeral state of one open stream."""
    session_id: str
    token: CancellationToken = field(default_factory=CancellationToken)
    processed_count: int = 0
    rolling_summary: str = ""

    def cancel(self) -> None:
        self.token.cancel()


class SessionRegistry:
    """
    Registry of in-flight streams.

    Constructed and passed explicitly; tests build as many isolated
    registries as they need.
    """

    def __init__(self):
        self._runs: Dict[str, SessionRun] = {}

    def __len__(self) -> int:
        return len(self._runs)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._runs

    def create(self, session_id: str) -> SessionRun:
        """Start a fresh run, cancelling any run already registered for the id."""
        existing = self._runs.get(session_id)
        if existing is not None:
            logger.info("Replacing active run for session %s", session_id)
            existing.cancel()

        run = SessionRun(session_id=session_id)
        self._runs[session_id] = run
        return run

    def get(self, session_id: str) -> Optional[SessionRun]:
        return self._runs.get(session_id)

    def remove(self, session_id: str, run: Optional[SessionRun] = None) -> None:
        """
        Cancel and evict.

        With run given, only that run is evicted; a newer run registered
        under the same id stays. The given run is cancelled either way.
        """
        if run is not None:
            run.cancel()

        current = self._runs.get(session_id)
        if current is None:
            return
        if run is not None and current is not run:
            return

        current.cancel()
        del self._runs[session_id]
