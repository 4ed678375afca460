"""
Debounced Persistence Tests
===========================

INVARIANTS TESTED:
1. Bursts collapse into one write of the latest payload
2. Never two writes in flight
3. Requests during a write are written right after it
4. Sink failures are counted and logged, not raised
"""

import asyncio

import pytest

from frontend.state.persistence import DebouncedSaver


class RecordingSink:
    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.payloads = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, payload):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.fail:
                raise OSError("disk full")
            self.payloads.append(payload)
        finally:
            self.in_flight -= 1


class TestDebouncedSaver:

    @pytest.mark.asyncio
    async def test_burst_collapses_to_latest(self):
        sink = RecordingSink()
        saver = DebouncedSaver(sink, delay=0.01)

        for n in range(5):
            saver.request(n)
        await asyncio.sleep(0.05)

        assert sink.payloads == [4]
        assert saver.writes == 1

    @pytest.mark.asyncio
    async def test_nothing_written_before_delay(self):
        sink = RecordingSink()
        saver = DebouncedSaver(sink, delay=10)

        saver.request("a")
        await asyncio.sleep(0.01)

        assert sink.payloads == []
        assert saver.has_pending
        await saver.flush()
        assert sink.payloads == ["a"]

    @pytest.mark.asyncio
    async def test_request_during_write_follows_it(self):
        sink = RecordingSink(delay=0.03)
        saver = DebouncedSaver(sink, delay=0.0)

        saver.request("first")
        await asyncio.sleep(0.01)
        assert saver.in_flight

        saver.request("second")
        saver.request("third")
        await saver.flush()

        assert sink.payloads == ["first", "third"]
        assert sink.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_flush_with_nothing_pending(self):
        sink = RecordingSink()
        saver = DebouncedSaver(sink)

        await saver.flush()

        assert sink.payloads == []

    @pytest.mark.asyncio
    async def test_failures_are_absorbed(self, caplog):
        saver = DebouncedSaver(RecordingSink(fail=True), delay=0.0)

        saver.request("x")
        await saver.flush()

        assert saver.failures == 1
        assert saver.writes == 0
        assert "disk full" in caplog.text

    @pytest.mark.asyncio
    async def test_closed_saver_refuses_requests(self):
        sink = RecordingSink()
        saver = DebouncedSaver(sink, delay=10)
        saver.request("last")

        await saver.close()

        assert sink.payloads == ["last"]
        with pytest.raises(RuntimeError):
            saver.request("late")

    @pytest.mark.asyncio
    async def test_each_key_keeps_its_latest_payload(self):
        sink = RecordingSink()
        saver = DebouncedSaver(sink, delay=10)

        saver.request({"id": "s1", "n": 1}, key="s1")
        saver.request({"id": "s1", "n": 2}, key="s1")
        saver.request({"id": "s2", "n": 1}, key="s2")
        await saver.flush()

        assert sink.payloads == [{"id": "s1", "n": 2}, {"id": "s2", "n": 1}]
        assert sink.max_in_flight == 1
