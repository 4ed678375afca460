"""
Debounced Persistence

Coalesces frequent stack updates into few writes.

GUARANTEES:
===========
1. At most one write in flight at any time
2. One pending slot per key; a newer payload replaces only the slot of its
   own key, so switching stacks never drops another stack's final state
3. A request made while a write is in flight is written right after it settles
4. flush() writes anything pending now and returns once nothing is pending
5. Sink failures are logged, never raised to the caller
"""

from __future__ import annotations
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional
import asyncio
import logging


logger = logging.getLogger(__name__)


DEFAULT_DELAY_SECONDS = 0.75

Sink = Callable[[Any], Awaitable[None]]


class DebouncedSaver:
    """
    Timer-driven writer with an explicit timer handle and keyed pending slots.

    Pending payloads are written oldest key first. Must be used from inside
    a running event loop.
    """

    def __init__(self, sink: Sink, delay: float = DEFAULT_DELAY_SECONDS):
        self._sink = sink
        self._delay = delay
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending: Dict[Hashable, Any] = {}
        self._in_flight: Optional[asyncio.Task] = None
        self._closed = False
        self.writes = 0
        self.failures = 0

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def request(self, payload: Any, key: Hashable = None) -> None:
        """Schedule payload for writing, replacing whatever was pending under key."""
        if self._closed:
            raise RuntimeError("DebouncedSaver is closed")
        self._pending[key] = payload
        if self._in_flight is not None:
            return
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._start_write()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_write(self) -> None:
        if self._in_flight is not None or not self._pending:
            return
        key = next(iter(self._pending))
        payload = self._pending.pop(key)
        self._in_flight = asyncio.ensure_future(self._write(payload))

    async def _write(self, payload: Any) -> None:
        try:
            await self._sink(payload)
            self.writes += 1
        except Exception as e:
            self.failures += 1
            logger.warning("Persisting stack failed: %s", e)
        finally:
            self._in_flight = None
            if self._pending:
                self._cancel_timer()
                self._start_write()

    async def flush(self) -> None:
        self._cancel_timer()
        while True:
            if self._in_flight is not None:
                await self._in_flight
                continue
            if not self._pending:
                return
            self._start_write()

    async def close(self) -> None:
        await self.flush()
        self._closed = True
