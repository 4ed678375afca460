"""
Client Stream Consumer

Client-side state of one viewed session: the ordered timeline, the
lifecycle of the open connection, and the print stack being persisted.

LIFECYCLE:
==========
    idle -> streaming -> paused -> streaming -> complete
                      -> ready (stopped with activities)
                      -> failed (server error or lost connection)

GUARANTEES:
===========
1. Activities are shown in non-decreasing index order; resume continues
   after the last index observed on the current timeline (a paused restart
   resumes in replace mode), so pause/resume leaves no gaps and no
   duplicates
2. Restart overwrites re-arriving activities in place and keeps every
   version they had before
3. Outside streaming, switching tone/model never reopens a stream;
   cached versions are selected before switch_version() returns;
   a newer switch cancels the regeneration of an older one
4. A complete stack is never streamed into; it is forked first
5. Listeners are called after every state change
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set
import asyncio
import contextlib
import logging

from backend.contracts.activity import Activity, ActivityVersion, FileStat, PatchArtifact
from backend.contracts.events import StreamEventType
from backend.regeneration import RegenerationCoordinator, RegenerationReport
from backend.temporal.stack import PrintStack, ProcessedActivity
from backend.temporal.versioning import VersionCache, version_key

from ..sse import SSEMessage
from .persistence import DebouncedSaver


logger = logging.getLogger(__name__)


CONNECTION_LOST = "Connection lost"


class ConsumerState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    PAUSED = "paused"
    READY = "ready"
    COMPLETE = "complete"
    FAILED = "failed"


class ReconcileMode(Enum):
    APPEND = "append"
    REPLACE = "replace"


Listener = Callable[["ClientStreamConsumer"], None]


def activity_from_event(payload: Dict[str, Any]) -> Activity:
    patch = None
    if payload.get("unidiffPatch") is not None or payload.get("commitMessage"):
        patch = PatchArtifact(
            unidiff_patch=payload.get("unidiffPatch") or "",
            suggested_commit_message=payload.get("commitMessage"),
        )
    return Activity(
        index=int(payload["index"]),
        activity_id=payload["activityId"],
        activity_type=payload.get("activityType") or "unknown",
        create_time=payload.get("createTime"),
        patch=patch,
    )


class ClientStreamConsumer:
    """
    Consumes the session stream for one viewer.

    api provides open_stream(), pause() and store_stack() (see
    frontend.api.TimelineClient). Regeneration and persistence are
    delegated to the coordinator and the saver.
    """

    def __init__(
        self,
        api: Any,
        coordinator: RegenerationCoordinator,
        saver: Optional[DebouncedSaver] = None,
        live: bool = True,
    ):
        self._api = api
        self._coordinator = coordinator
        self._saver = saver or DebouncedSaver(api.store_stack)
        self._live = live

        self.session_id: Optional[str] = None
        self.session_info: Optional[Dict[str, Any]] = None
        self.state = ConsumerState.IDLE
        self.error: Optional[str] = None
        self.tone: Optional[str] = None
        self.model: Optional[str] = None
        self.mode = ReconcileMode.APPEND
        self.stack: Optional[PrintStack] = None

        # activity id -> versions held before a restart
        self._carryover: Dict[str, VersionCache] = {}
        # parameters the open connection narrates with
        self._stream_tone: Optional[str] = None
        self._stream_model: Optional[str] = None
        # highest index received on the current timeline; resume continues after it
        self._last_observed_index = -1

        self._task: Optional[asyncio.Task] = None
        self._regeneration: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    # =========================================================================
    # OBSERVATION
    # =========================================================================

    @property
    def activities(self) -> List[ProcessedActivity]:
        return self.stack.activities if self.stack else []

    @property
    def last_index(self) -> int:
        return max((pa.index for pa in self.activities), default=-1)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Stream listener failed")

    # =========================================================================
    # CONTROLS
    # =========================================================================

    async def play(
        self,
        session_id: str,
        tone: str,
        model: str,
        restart: bool = False,
        after_index: Optional[int] = None,
    ) -> None:
        await self._close_connection()
        self.tone = tone
        self.model = model
        self.error = None

        if restart:
            self.mode = ReconcileMode.REPLACE
            self._carryover = {pa.activity_id: pa.versions.copy() for pa in self.activities}
            stale = list(self.activities)
            self.stack = PrintStack.start(session_id, tone, model, repo=self._repo())
            self.stack.activities = stale
            self.session_id = session_id
            self._last_observed_index = -1
            self._open(-1)
        elif after_index is not None:
            self.mode = ReconcileMode.APPEND
            if self.stack is None or self.stack.session_id != session_id:
                self.stack = PrintStack.start(session_id, tone, model, repo=self._repo())
            elif self.stack.is_complete:
                self.stack = self.stack.fork()
            self.session_id = session_id
            self._last_observed_index = after_index
            self._open(after_index)
        else:
            self.mode = ReconcileMode.APPEND
            self._carryover = {}
            self.session_info = None
            self.session_id = session_id
            self.stack = PrintStack.start(session_id, tone, model)
            self._last_observed_index = -1
            self._open(-1)

    async def pause(self) -> None:
        if self.state != ConsumerState.STREAMING:
            return
        await self._close_connection()
        self._pause_server()
        self._set_state(ConsumerState.PAUSED)

    async def resume(self) -> None:
        if self.state != ConsumerState.PAUSED or self.session_id is None:
            return
        self.error = None
        self._open(self._last_observed_index)

    async def stop(self) -> None:
        await self._close_connection()
        self._pause_server()
        if self.stack is not None and self.activities:
            if self.stack.mark_complete():
                self._request_save()
            self._set_state(ConsumerState.READY)
        else:
            self._set_state(ConsumerState.IDLE)
        await self._saver.flush()

    def hydrate(self, stack: PrintStack) -> None:
        """Show a stored stack; continue it with play(after_index=...)."""
        self.stack = stack
        self.session_id = stack.session_id
        self.tone = stack.tone
        self.model = stack.model
        self.mode = ReconcileMode.APPEND
        self._carryover = {}
        self.error = None
        self._last_observed_index = self.last_index
        self._set_state(ConsumerState.COMPLETE if stack.is_complete else ConsumerState.READY)

    def switch_version(
        self,
        tone: str,
        model: str,
        force: bool = False,
    ) -> Optional[asyncio.Task]:
        """
        Present the timeline under (tone, model).

        While streaming only later activities are affected. Otherwise
        cached versions are selected right here and a task is returned
        for the activities that still need a call (None when none do).
        """
        self._cancel_regeneration()
        self.tone = tone
        self.model = model

        if self.state == ConsumerState.STREAMING or not self.activities:
            self._notify()
            return None

        key = version_key(tone, model)
        _, deficit, changed = self._coordinator.apply_cached(self.activities, key, force=force)
        if changed:
            self._request_save()
        self._notify()

        if not deficit:
            return None
        self._regeneration = asyncio.ensure_future(self._regenerate(tone, model, force))
        return self._regeneration

    def _cancel_regeneration(self) -> None:
        task = self._regeneration
        self._regeneration = None
        if task is not None and not task.done():
            task.cancel()

    async def _regenerate(self, tone: str, model: str, force: bool) -> RegenerationReport:
        report = await self._coordinator.regenerate(
            self.activities,
            tone,
            model,
            force=force,
            on_result=lambda outcome: self._notify(),
            persist=self._persist_now,
        )
        self._notify()
        return report

    async def wait(self) -> None:
        """Wait for the open connection to end."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def close(self) -> None:
        self._cancel_regeneration()
        await self._close_connection()
        await self._saver.close()

    # =========================================================================
    # CONNECTION
    # =========================================================================

    def _open(self, after_index: int) -> None:
        self._stream_tone = self.tone
        self._stream_model = self.model
        self._set_state(ConsumerState.STREAMING)
        self._task = asyncio.create_task(
            self._consume(self.session_id, self.tone, self.model, after_index)
        )

    async def _close_connection(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _consume(self, session_id: str, tone: str, model: str, after_index: int) -> None:
        stream = self._api.open_stream(
            session_id, tone=tone, model=model, after_index=after_index, live=self._live
        )
        try:
            async for message in stream:
                if self._handle(message):
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Stream for %s failed: %s", session_id, e)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        self._fail(CONNECTION_LOST)

    def _handle(self, message: SSEMessage) -> bool:
        """Apply one server event. Returns True on a terminal event."""
        name = message.event
        if name == StreamEventType.HEARTBEAT.value:
            return False

        payload = message.json()
        if name == StreamEventType.SESSION_INFO.value:
            self.session_info = payload
            if self.stack is not None and payload.get("repo"):
                self.stack.repo = payload["repo"]
            self._notify()
            return False

        if name == StreamEventType.ACTIVITY_PROCESSED.value:
            self._reconcile(payload)
            return False

        if name == StreamEventType.SESSION_COMPLETE.value:
            if self.stack is not None:
                self.stack.mark_complete()
                self._request_save()
            self._set_state(ConsumerState.COMPLETE)
            self._spawn(self._saver.flush())
            return True

        if name == StreamEventType.SESSION_ERROR.value:
            self._fail(payload.get("error") or "Unknown error")
            return True

        logger.debug("Ignoring stream event %s", name)
        return False

    def _reconcile(self, payload: Dict[str, Any]) -> None:
        activity = activity_from_event(payload)
        version = ActivityVersion.create(
            summary=payload.get("summary") or "",
            tone=self._stream_tone,
            model=self._stream_model,
            status=payload.get("status"),
            code_review=payload.get("codeReview"),
        )

        self._last_observed_index = max(self._last_observed_index, activity.index)
        carried = self._carryover.pop(activity.activity_id, None)
        versions = carried.copy() if carried is not None else VersionCache()
        versions.put(version, select=True)

        processed = ProcessedActivity(
            activity=activity,
            files=[FileStat.from_dict(f) for f in payload.get("files") or []],
            versions=versions,
        )

        if self.mode == ReconcileMode.REPLACE and self.stack.find(activity.activity_id) is not None:
            self.stack.upsert(processed)
        else:
            self.stack.activities.append(processed)

        self._request_save()
        self._notify()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _repo(self) -> str:
        if self.session_info and self.session_info.get("repo"):
            return self.session_info["repo"]
        return self.stack.repo if self.stack else ""

    def _set_state(self, state: ConsumerState) -> None:
        self.state = state
        self._notify()

    def _fail(self, message: str) -> None:
        self.error = message
        self._set_state(ConsumerState.FAILED)

    def _request_save(self) -> None:
        if self.stack is not None:
            self._saver.request(self.stack.to_dict(), key=self.stack.id)

    async def _persist_now(self) -> None:
        self._request_save()
        await self._saver.flush()

    def _pause_server(self) -> None:
        if self.session_id is not None:
            self._spawn(self._pause_quietly(self.session_id))

    async def _pause_quietly(self, session_id: str) -> None:
        try:
            await self._api.pause(session_id)
        except Exception as e:
            logger.info("Server pause for %s failed: %s", session_id, e)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
