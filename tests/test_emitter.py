"""
Emitter Tests
=============

Tests for the rate-limited tick loop between the frame queue and the
encoder pipe.
"""

import asyncio

import pytest

from pagecast.errors import PipeBroken
from pagecast.stream import Frame, FrameBuffer, RateLimitedEmitter

from conftest import RecordingSink, wait_until


def filled_buffer(count: int) -> FrameBuffer:
    buffer = FrameBuffer()
    for i in range(count):
        buffer.put(Frame(sequence=i, timestamp=float(i), data=f"frame-{i}".encode()))
    return buffer


class GatedSink(RecordingSink):
    """Sink whose first write stays congested until release() is called."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.released_at = None

    def release(self) -> None:
        self.released_at = asyncio.get_running_loop().time()
        self.gate.set()

    async def write(self, data: bytes) -> bool:
        await super().write(data)
        if len(self.writes) == 1:
            await self.gate.wait()
            return False
        return True


async def run_until(emitter: RateLimitedEmitter, capturing: asyncio.Event, predicate, timeout: float = 3.0):
    task = asyncio.create_task(emitter.run())
    reached = await wait_until(predicate, timeout=timeout)
    capturing.clear()
    await asyncio.wait_for(task, timeout=2.0)
    return reached


class TestEmitterCadence:
    """Tests for pacing and ordering."""

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            RateLimitedEmitter(FrameBuffer(), RecordingSink(), 0, asyncio.Event())

    def test_writes_in_fifo_order(self):
        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = RecordingSink()
            emitter = RateLimitedEmitter(filled_buffer(5), sink, 50, capturing)
            await run_until(emitter, capturing, lambda: len(sink.writes) == 5)
            return sink, emitter

        sink, emitter = asyncio.run(scenario())
        assert sink.writes == [f"frame-{i}".encode() for i in range(5)]
        assert emitter.metrics.last_sequence == 4
        assert emitter.metrics.bytes_sent == sum(len(w) for w in sink.writes)

    def test_at_most_one_frame_per_tick(self):
        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = RecordingSink()
            emitter = RateLimitedEmitter(filled_buffer(6), sink, 20, capturing)
            await run_until(emitter, capturing, lambda: len(sink.writes) == 6)
            return sink, emitter

        sink, emitter = asyncio.run(scenario())
        gaps = [b - a for a, b in zip(sink.times, sink.times[1:])]
        # 20 fps -> 50 ms per tick; allow for timer granularity
        assert min(gaps) >= emitter.interval * 0.8
        assert emitter.metrics.ticks >= emitter.metrics.frames_sent

    def test_average_interval_matches_frame_rate(self):
        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = RecordingSink()
            emitter = RateLimitedEmitter(filled_buffer(20), sink, 5, capturing)
            await run_until(emitter, capturing, lambda: len(sink.writes) == 8, timeout=5.0)
            return sink

        sink = asyncio.run(scenario())
        mean_gap = (sink.times[-1] - sink.times[0]) / (len(sink.times) - 1)
        assert mean_gap == pytest.approx(0.2, rel=0.15)

    def test_empty_queue_ticks_without_writing(self):
        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = RecordingSink()
            emitter = RateLimitedEmitter(FrameBuffer(), sink, 50, capturing)
            task = asyncio.create_task(emitter.run())
            await asyncio.sleep(0.15)
            capturing.clear()
            await asyncio.wait_for(task, timeout=1.0)
            return sink, emitter

        sink, emitter = asyncio.run(scenario())
        assert sink.writes == []
        assert emitter.metrics.ticks > 1
        assert emitter.metrics.frames_sent == 0

    def test_stops_at_tick_boundary_when_capturing_cleared(self):
        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = RecordingSink()
            buffer = filled_buffer(100)
            emitter = RateLimitedEmitter(buffer, sink, 10, capturing)
            task = asyncio.create_task(emitter.run())
            await wait_until(lambda: len(sink.writes) >= 2)
            capturing.clear()
            await asyncio.wait_for(task, timeout=1.0)
            sent = len(sink.writes)
            await asyncio.sleep(0.3)
            return sent, sink, buffer

        sent, sink, buffer = asyncio.run(scenario())
        assert len(sink.writes) == sent
        assert buffer.size == 100 - sent

    def test_first_frame_callback_fires_once(self):
        calls = []

        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = RecordingSink()
            emitter = RateLimitedEmitter(
                filled_buffer(3), sink, 50, capturing,
                on_first_frame=lambda: calls.append("first"),
            )
            await run_until(emitter, capturing, lambda: len(sink.writes) == 3)

        asyncio.run(scenario())
        assert calls == ["first"]


class TestEmitterPipe:
    """Tests for backpressure and broken pipes."""

    def test_counts_backpressure(self):
        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = RecordingSink(drained=False)
            emitter = RateLimitedEmitter(filled_buffer(3), sink, 50, capturing)
            await run_until(emitter, capturing, lambda: len(sink.writes) == 3)
            return emitter

        emitter = asyncio.run(scenario())
        assert emitter.metrics.backpressure_events == 3
        assert emitter.metrics.frames_sent == 3

    def test_congested_pipe_suspends_popping(self):
        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = GatedSink()
            buffer = filled_buffer(10)
            emitter = RateLimitedEmitter(buffer, sink, 20, capturing)
            task = asyncio.create_task(emitter.run())

            await wait_until(lambda: len(sink.writes) == 1)
            await asyncio.sleep(0.3)
            stalled = (len(sink.writes), buffer.size)

            sink.release()
            await wait_until(lambda: len(sink.writes) == 10)
            capturing.clear()
            await asyncio.wait_for(task, timeout=1.0)
            return stalled, sink, emitter

        stalled, sink, emitter = asyncio.run(scenario())
        assert stalled == (1, 9)
        assert sink.writes == [f"frame-{i}".encode() for i in range(10)]
        assert emitter.metrics.backpressure_events == 1

    def test_full_interval_after_long_drain(self):
        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = GatedSink()
            emitter = RateLimitedEmitter(filled_buffer(3), sink, 10, capturing)
            task = asyncio.create_task(emitter.run())

            await wait_until(lambda: len(sink.writes) == 1)
            await asyncio.sleep(0.4)
            sink.release()
            await wait_until(lambda: len(sink.writes) == 3)
            capturing.clear()
            await asyncio.wait_for(task, timeout=1.0)
            return sink, emitter

        sink, emitter = asyncio.run(scenario())
        assert emitter.metrics.slipped_ticks >= 1
        # 10 fps -> 100 ms; the frame after the drain waits a whole tick
        assert sink.times[1] - sink.released_at >= emitter.interval * 0.8

    def test_broken_pipe_while_capturing_reports_failure(self):
        failures = []

        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = RecordingSink(fail_after=2)
            emitter = RateLimitedEmitter(
                filled_buffer(5), sink, 50, capturing,
                on_failure=failures.append,
            )
            await asyncio.wait_for(emitter.run(), timeout=2.0)
            return sink, emitter

        sink, emitter = asyncio.run(scenario())
        assert emitter.stopped
        assert len(sink.writes) == 2
        assert len(failures) == 1
        assert isinstance(failures[0], PipeBroken)

    def test_expected_broken_pipe_is_swallowed(self):
        failures = []

        async def scenario():
            capturing = asyncio.Event()
            capturing.set()
            sink = RecordingSink(fail_after=0, expected=True)
            emitter = RateLimitedEmitter(
                filled_buffer(2), sink, 50, capturing,
                on_failure=failures.append,
            )
            await asyncio.wait_for(emitter.run(), timeout=2.0)
            return emitter

        emitter = asyncio.run(scenario())
        assert emitter.stopped
        assert failures == []
