"""
Client Stream Consumer Tests
============================

The consumer talks to a FakeTimelineApi that drives the real
StreamController over an in-memory source, so every event crosses the
SSE encoding on its way to the client.

INVARIANTS TESTED:
1. Pause/resume leaves no gaps and no duplicates
2. Restart replaces activities in place and keeps their versions
3. Switching to a cached version makes no narration call
4. A complete stack is forked, never streamed into
5. Server and connection failures end in the failed state
6. A later version switch cancels an earlier one still in flight
7. Moving to a new stack never drops the previous stack's pending save
"""

import asyncio

import pytest

from backend.regeneration import RegenerationCoordinator
from backend.stream.controller import StreamController, StreamRequest
from backend.temporal.registry import SessionRegistry
from backend.temporal.stack import StackStatus
from backend.temporal.versioning import version_key
from frontend.sse import SSEMessage, SSEParser
from frontend.state.persistence import DebouncedSaver
from frontend.state.stream import CONNECTION_LOST, ClientStreamConsumer, ConsumerState

from ..fixtures import (
    MODEL,
    SESSION_ID,
    TONE,
    InMemoryActivitySource,
    ScriptedNarrator,
    make_activities,
    make_activity,
    make_stack,
)


class FakeTimelineApi:
    """In-process stand-in for frontend.api.TimelineClient."""

    def __init__(self, source: InMemoryActivitySource, narrator: ScriptedNarrator):
        self.registry = SessionRegistry()
        self.controller = StreamController(source, narrator, self.registry, heartbeat_seconds=60)
        self.opened = []
        self.paused = []
        self.stored = {}

    async def open_stream(self, session_id, tone=None, model=None, after_index=None, live=True):
        self.opened.append((tone, model, after_index))
        request = StreamRequest(
            session_id, tone, model,
            after_index=after_index if after_index is not None else -1,
            live=live,
        )
        stream = self.controller.run(request)
        try:
            async for event in stream:
                for message in SSEParser().parse(event.to_sse()):
                    yield message
        finally:
            await stream.aclose()

    async def pause(self, session_id):
        self.paused.append(session_id)
        run = self.registry.get(session_id)
        if run is not None:
            run.cancel()

    async def store_stack(self, document):
        self.stored[document["id"]] = document


class GatedNarrator(ScriptedNarrator):
    """Holds narration of the gated activity ids until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gated = set()
        self.gate = asyncio.Event()

    async def narrate(self, activity, files, previous_summary, tone, model) -> str:
        if activity.activity_id in self.gated:
            await self.gate.wait()
        return await super().narrate(activity, files, previous_summary, tone, model)


class DroppingApi(FakeTimelineApi):
    """Connection drops after the session info event."""

    async def open_stream(self, session_id, tone=None, model=None, after_index=None, live=True):
        yield SSEMessage(event="session:info", data='{"repo": "owner/repo"}')
        raise ConnectionResetError("peer went away")


async def wait_until(predicate, timeout: float = 1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def build(source, narrator=None, live=False, api_class=FakeTimelineApi):
    narrator = narrator or ScriptedNarrator()
    api = api_class(source, narrator)
    consumer = ClientStreamConsumer(
        api,
        RegenerationCoordinator(narrator.restyle),
        saver=DebouncedSaver(api.store_stack, delay=0.0),
        live=live,
    )
    return consumer, api, narrator


def ids(consumer):
    return [pa.activity_id for pa in consumer.activities]


# =============================================================================
# PLAYBACK
# =============================================================================

class TestPlayback:

    @pytest.mark.asyncio
    async def test_history_plays_to_completion(self):
        consumer, api, _ = build(InMemoryActivitySource(make_activities(3)))

        await consumer.play(SESSION_ID, TONE, MODEL)
        await consumer.wait()
        await consumer.close()

        assert consumer.state == ConsumerState.COMPLETE
        assert ids(consumer) == ["a0", "a1", "a2"]
        assert consumer.stack.repo == "owner/repo"
        stored = api.stored[consumer.stack.id]
        assert stored["stackStatus"] == "complete"
        assert len(stored["activities"]) == 3
        assert stored["activities"][0]["tone"] == TONE

    @pytest.mark.asyncio
    async def test_listeners_notified(self):
        consumer, _, _ = build(InMemoryActivitySource(make_activities(2)))
        states = []
        unsubscribe = consumer.subscribe(lambda c: states.append(c.state))

        await consumer.play(SESSION_ID, TONE, MODEL)
        await consumer.wait()
        unsubscribe()
        seen = len(states)
        consumer.hydrate(consumer.stack)
        await consumer.close()

        assert ConsumerState.STREAMING in states
        assert states[-1] == ConsumerState.COMPLETE
        assert len(states) == seen

    @pytest.mark.asyncio
    async def test_pause_resume_no_gaps(self):
        source = InMemoryActivitySource(make_activities(2))
        consumer, api, _ = build(source, live=True)

        await consumer.play(SESSION_ID, TONE, MODEL)
        await wait_until(lambda: len(consumer.activities) == 2)
        stack_id = consumer.stack.id

        await consumer.pause()
        assert consumer.state == ConsumerState.PAUSED
        await wait_until(lambda: api.paused == [SESSION_ID])

        source.push(make_activity(2))
        source.push(make_activity(3))
        await consumer.resume()
        await wait_until(lambda: len(consumer.activities) == 4)
        source.finish()
        await consumer.wait()
        await consumer.close()

        assert ids(consumer) == ["a0", "a1", "a2", "a3"]
        assert [pa.index for pa in consumer.activities] == [0, 1, 2, 3]
        assert api.opened[-1][2] == 1
        assert consumer.stack.id == stack_id
        assert consumer.state == ConsumerState.COMPLETE

    @pytest.mark.asyncio
    async def test_stop_marks_stack_complete(self):
        source = InMemoryActivitySource(make_activities(1))
        consumer, api, _ = build(source, live=True)

        await consumer.play(SESSION_ID, TONE, MODEL)
        await wait_until(lambda: len(consumer.activities) == 1)
        await consumer.stop()

        assert consumer.state == ConsumerState.READY
        assert consumer.stack.status == StackStatus.COMPLETE
        assert api.stored[consumer.stack.id]["stackStatus"] == "complete"
        await wait_until(lambda: len(api.registry) == 0)
        await consumer.close()

    @pytest.mark.asyncio
    async def test_stop_without_activities_is_idle(self):
        source = InMemoryActivitySource([])
        consumer, _, _ = build(source, live=True)

        await consumer.play(SESSION_ID, TONE, MODEL)
        await consumer.stop()
        await consumer.close()

        assert consumer.state == ConsumerState.IDLE


# =============================================================================
# RESTART AND HYDRATION
# =============================================================================

class TestRestartAndHydrate:

    @pytest.mark.asyncio
    async def test_restart_overwrites_in_place_and_keeps_versions(self):
        consumer, api, _ = build(InMemoryActivitySource(make_activities(3)))
        await consumer.play(SESSION_ID, TONE, MODEL)
        await consumer.wait()
        first_id = consumer.stack.id
        await consumer.switch_version("pirate", MODEL)

        await consumer.play(SESSION_ID, "haiku", MODEL, restart=True)
        await consumer.wait()
        await consumer.close()

        assert consumer.stack.id != first_id
        assert ids(consumer) == ["a0", "a1", "a2"]
        for pa in consumer.activities:
            assert set(pa.versions.keys()) == {
                version_key(TONE, MODEL),
                version_key("pirate", MODEL),
                version_key("haiku", MODEL),
            }
            assert pa.tone == "haiku"
        assert api.stored[first_id]["stackStatus"] == "complete"
        assert api.stored[first_id]["activities"][0]["tone"] == "pirate"

    @pytest.mark.asyncio
    async def test_paused_restart_resumes_where_it_stopped(self):
        narrator = GatedNarrator()
        source = InMemoryActivitySource(make_activities(4))
        consumer, api, _ = build(source, narrator=narrator, live=True)
        await consumer.play(SESSION_ID, TONE, MODEL)
        await wait_until(lambda: len(consumer.activities) == 4)

        pirate = version_key("pirate", MODEL)
        narrator.gated = {"a2", "a3"}
        await consumer.play(SESSION_ID, "pirate", MODEL, restart=True)
        await wait_until(lambda: consumer.activities[1].versions.has(pirate))
        await consumer.pause()
        await wait_until(lambda: api.paused == [SESSION_ID])

        narrator.gate.set()
        await consumer.resume()
        await wait_until(lambda: all(pa.versions.has(pirate) for pa in consumer.activities))
        source.finish()
        await consumer.wait()
        await consumer.close()

        assert api.opened[-1] == ("pirate", MODEL, 1)
        assert ids(consumer) == ["a0", "a1", "a2", "a3"]
        assert all(pa.tone == "pirate" for pa in consumer.activities)
        assert all(pa.versions.has(version_key(TONE, MODEL)) for pa in consumer.activities)
        assert consumer.state == ConsumerState.COMPLETE

    @pytest.mark.asyncio
    async def test_new_stack_keeps_previous_stack_unsaved_state(self):
        source = InMemoryActivitySource(make_activities(3))
        narrator = ScriptedNarrator()
        api = FakeTimelineApi(source, narrator)
        consumer = ClientStreamConsumer(
            api,
            RegenerationCoordinator(narrator.restyle),
            saver=DebouncedSaver(api.store_stack, delay=5.0),
            live=True,
        )

        await consumer.play(SESSION_ID, TONE, MODEL)
        await wait_until(lambda: len(consumer.activities) == 3)
        first_id = consumer.stack.id
        assert api.stored == {}

        await consumer.play(SESSION_ID, "pirate", MODEL, restart=True)
        await wait_until(lambda: all(pa.tone == "pirate" for pa in consumer.activities))
        source.finish()
        await consumer.wait()
        await consumer.close()

        assert set(api.stored) == {first_id, consumer.stack.id}
        assert len(api.stored[first_id]["activities"]) == 3
        assert api.stored[first_id]["activities"][0]["tone"] == TONE
        assert api.stored[consumer.stack.id]["stackStatus"] == "complete"

    @pytest.mark.asyncio
    async def test_hydrated_complete_stack_is_forked(self):
        stored = make_stack(count=2)
        stored.mark_complete()
        consumer, api, narrator = build(InMemoryActivitySource(make_activities(3)))

        consumer.hydrate(stored)
        assert consumer.state == ConsumerState.COMPLETE

        await consumer.play(SESSION_ID, TONE, MODEL, after_index=consumer.last_index)
        await consumer.wait()
        await consumer.close()

        assert consumer.stack.id != stored.id
        assert ids(consumer) == ["a0", "a1", "a2"]
        assert len(stored.activities) == 2
        assert narrator.narrate_calls == ["a2"]
        assert stored.id not in api.stored


# =============================================================================
# VERSION SWITCHING
# =============================================================================

class TestVersionSwitching:

    @pytest.mark.asyncio
    async def test_cached_switch_makes_no_call(self):
        consumer, _, narrator = build(InMemoryActivitySource(make_activities(2)))
        await consumer.play(SESSION_ID, TONE, MODEL)
        await consumer.wait()

        task = consumer.switch_version("pirate", MODEL)
        report = await task
        calls = len(narrator.restyle_calls)

        assert sorted(report.regenerated) == ["a0", "a1"]
        assert consumer.activities[0].tone == "pirate"

        assert consumer.switch_version(TONE, MODEL) is None
        assert len(narrator.restyle_calls) == calls
        assert consumer.activities[0].summary == f"{TONE}:{MODEL}:Step 0"
        await consumer.close()

    @pytest.mark.asyncio
    async def test_switch_while_streaming_affects_later_opens_only(self):
        source = InMemoryActivitySource(make_activities(1))
        consumer, api, narrator = build(source, live=True)

        await consumer.play(SESSION_ID, TONE, MODEL)
        await wait_until(lambda: len(consumer.activities) == 1)

        assert consumer.switch_version("pirate", MODEL) is None
        source.push(make_activity(1))
        await wait_until(lambda: len(consumer.activities) == 2)

        assert narrator.restyle_calls == []
        assert consumer.tone == "pirate"
        assert consumer.activities[1].tone == TONE

        await consumer.pause()
        await consumer.resume()
        assert api.opened[-1][0] == "pirate"
        source.finish()
        await consumer.wait()
        await consumer.close()

    @pytest.mark.asyncio
    async def test_later_switch_supersedes_slow_earlier_one(self):
        narrator = ScriptedNarrator(delay=0.05)
        consumer, api, _ = build(InMemoryActivitySource([]), narrator=narrator)
        stack = make_stack(count=2)
        consumer.hydrate(stack)

        first = consumer.switch_version("pirate", MODEL)
        await asyncio.sleep(0.01)
        assert narrator.in_flight == 2
        second = consumer.switch_version("haiku", MODEL)
        report = await second
        with pytest.raises(asyncio.CancelledError):
            await first
        await asyncio.sleep(0.1)
        await consumer.close()

        assert sorted(report.regenerated) == ["a0", "a1"]
        assert consumer.tone == "haiku"
        assert [pa.tone for pa in consumer.activities] == ["haiku", "haiku"]
        assert not any(pa.versions.has(version_key("pirate", MODEL)) for pa in consumer.activities)
        assert api.stored[stack.id]["activities"][0]["tone"] == "haiku"


# =============================================================================
# FAILURES
# =============================================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_server_error_event(self):
        consumer, _, _ = build(InMemoryActivitySource(fail_metadata=True))

        await consumer.play(SESSION_ID, TONE, MODEL)
        await consumer.wait()
        await consumer.close()

        assert consumer.state == ConsumerState.FAILED
        assert "not found" in consumer.error

    @pytest.mark.asyncio
    async def test_dropped_connection(self):
        consumer, _, _ = build(InMemoryActivitySource([]), api_class=DroppingApi)

        await consumer.play(SESSION_ID, TONE, MODEL)
        await consumer.wait()
        await consumer.close()

        assert consumer.state == ConsumerState.FAILED
        assert consumer.error == CONNECTION_LOST
