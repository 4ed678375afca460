"""
Stream Controller
=================

Drives one viewing run of a session: metadata, then every activity past
the watermark enriched with narration, then a terminal event.

STATE MACHINE (per run() invocation):
=====================================
    opening -> streaming -> completed | errored | cancelled

GUARANTEES:
===========
1. Heartbeats are emitted every heartbeat_seconds until teardown,
   whether or not activities arrive
2. Activities with index <= after_index are observed but never emitted
3. Enrichment failures degrade fields; they never end the stream
4. Cancellation ends the run silently, within one heartbeat interval
   even while the source is idle
5. Teardown runs on every exit path: heartbeat stopped, producer and
   subscription closed, run evicted from the registry
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional
import asyncio
import contextlib
import logging

from adapter.narrator import Narrator
from ..contracts import events
from ..contracts.activity import Activity, FileStat
from ..contracts.events import StreamEvent, StreamEventType
from ..ingestion.diffstats import extract_file_stats
from ..ingestion.source import ActivitySource
from ..temporal.registry import CancellationToken, SessionRegistry, SessionRun


logger = logging.getLogger(__name__)


DEFAULT_HEARTBEAT_SECONDS = 15.0


class StreamState(Enum):
    OPENING = "opening"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StreamRequest:
    session_id: str
    tone: str
    model: str
    after_index: int = -1
    live: bool = True


def degraded_summary(activity: Activity) -> str:
    """Fallback text when narration fails."""
    return activity.commit_message or activity.title or activity.activity_type


class StreamController:
    """
    Produces the event sequence for one open stream.

    The source is read by a producer task feeding a queue; a heartbeat
    task feeds the same queue. run() drains the queue and races every
    read against the run's cancellation token.
    """

    def __init__(
        self,
        source: ActivitySource,
        narrator: Narrator,
        registry: SessionRegistry,
        heartbeat_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
    ):
        self._source = source
        self._narrator = narrator
        self._registry = registry
        self._heartbeat_seconds = heartbeat_seconds

    async def run(self, request: StreamRequest) -> AsyncIterator[StreamEvent]:
        session_id = request.session_id
        run = self._registry.create(session_id)
        queue: asyncio.Queue = asyncio.Queue()
        state = StreamState.OPENING

        heartbeat_task = asyncio.create_task(self._heartbeat(queue))
        producer_task = asyncio.create_task(self._produce(request, run, queue))
        logger.info(
            "Stream opened: session=%s tone=%s model=%s after_index=%d live=%s",
            session_id, request.tone, request.model, request.after_index, request.live,
        )

        try:
            while True:
                event = await self._next_event(queue, run.token)
                if event is None:
                    state = StreamState.CANCELLED
                    return

                if event.event_type == StreamEventType.SESSION_INFO:
                    state = StreamState.STREAMING
                elif event.event_type == StreamEventType.SESSION_COMPLETE:
                    state = StreamState.COMPLETED
                elif event.event_type == StreamEventType.SESSION_ERROR:
                    state = StreamState.ERRORED

                if event.event_type == StreamEventType.ACTIVITY_PROCESSED:
                    run.processed_count = event.payload["index"] + 1

                logger.debug("Stream %s emitting %s", session_id, event.name)
                yield event

                if event.is_terminal:
                    return
        finally:
            heartbeat_task.cancel()
            producer_task.cancel()
            for task in (heartbeat_task, producer_task):
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._registry.remove(session_id, run)
            logger.info(
                "Stream closed: session=%s state=%s processed=%d",
                session_id, state.value, run.processed_count,
            )

    # =========================================================================
    # TASKS
    # =========================================================================

    async def _next_event(
        self,
        queue: asyncio.Queue,
        token: CancellationToken,
    ) -> Optional[StreamEvent]:
        """Next queued event, or None once the token is cancelled."""
        if token.cancelled:
            return None
        getter = asyncio.ensure_future(queue.get())
        canceller = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({getter, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (getter, canceller):
                if not task.done():
                    task.cancel()
        if token.cancelled:
            return None
        return getter.result()

    async def _heartbeat(self, queue: asyncio.Queue) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            await queue.put(events.heartbeat())

    async def _produce(self, request: StreamRequest, run: SessionRun, queue: asyncio.Queue) -> None:
        session_id = request.session_id

        try:
            metadata = await self._source.get_session(session_id)
        except Exception as e:
            logger.warning("Session %s metadata unavailable: %s", session_id, e)
            await queue.put(events.session_error(session_id, str(e)))
            return

        await queue.put(events.session_info(metadata))

        observed = 0
        subscription = self._source.activities(session_id, live=request.live)
        try:
            async for activity in subscription:
                if run.token.cancelled:
                    return
                observed += 1
                if activity.index <= request.after_index:
                    continue
                event = await self.enrich(activity, run, request)
                if run.token.cancelled:
                    return
                await queue.put(event)
        except Exception as e:
            logger.exception("Stream %s failed after %d activities", session_id, observed)
            await queue.put(events.session_error(session_id, str(e)))
            return
        finally:
            aclose = getattr(subscription, "aclose", None)
            if aclose is not None:
                await aclose()

        await queue.put(events.session_complete(session_id, observed))

    # =========================================================================
    # ENRICHMENT
    # =========================================================================

    async def enrich(self, activity: Activity, run: SessionRun, request: StreamRequest) -> StreamEvent:
        """
        Diff stats plus narration, status line and code review.

        The three narration calls run concurrently. Each failure is
        isolated: summary degrades, status and review are omitted.
        """
        files: List[FileStat] = []
        if activity.has_change_set:
            try:
                files = extract_file_stats(activity.patch.unidiff_patch)
            except Exception as e:
                logger.warning("Diff stats failed for activity %s: %s", activity.activity_id, e)

        calls = [
            self._narrator.narrate(activity, files, run.rolling_summary, request.tone, request.model),
            self._narrator.status(activity.index + 1, request.tone, request.model),
        ]
        if activity.has_change_set:
            calls.append(self._narrator.review(activity, files, request.model))

        results = await asyncio.gather(*calls, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        summary_result = results[0]
        status_result = results[1]
        review_result = results[2] if len(results) > 2 else None

        if isinstance(summary_result, Exception):
            logger.warning("Narration failed for activity %s: %s", activity.activity_id, summary_result)
            summary = degraded_summary(activity)
        else:
            summary = summary_result
            run.rolling_summary = summary

        status = None
        if isinstance(status_result, Exception):
            logger.warning("Status line failed for activity %s: %s", activity.activity_id, status_result)
        else:
            status = status_result

        code_review = None
        if isinstance(review_result, Exception):
            logger.warning("Code review failed for activity %s: %s", activity.activity_id, review_result)
        else:
            code_review = review_result

        return events.activity_processed(activity, summary, files, status=status, code_review=code_review)
