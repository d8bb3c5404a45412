"""
Tests for InferenceScheduler tick semantics and shutdown.
"""

import asyncio
import threading

import numpy as np
import pytest

from errors import InferenceError, MalformedPredictionSet
from inference.model_handle import ModelHandle
from models.config import SchedulerConfig
from models.frame import FrameData
from pipeline.aggregator import PredictionAggregator
from pipeline.scheduler import InferenceScheduler

from conftest import LABELS, FakeBackend


class StaticCapture:
    """Capture stand-in that serves a fixed frame (or None)."""

    def __init__(self, frame=None):
        self.frame = frame

    def current_frame(self):
        return self.frame


def frame_data(index=1):
    return FrameData.from_numpy(np.zeros((8, 8, 3), dtype=np.uint8), timestamp=0.0, frame_index=index)


def make_scheduler(backend=None, frame=True, tick_hz=100.0, classify_timeout=None):
    backend = backend or FakeBackend()
    results, diagnostics = [], []
    scheduler = InferenceScheduler(
        StaticCapture(frame_data() if frame else None),
        ModelHandle(backend, LABELS, name="fake"),
        PredictionAggregator(["Phone", "Charger"], class_order=LABELS),
        SchedulerConfig(tick_hz=tick_hz, classify_timeout=classify_timeout),
        on_result=results.append,
        on_diagnostic=diagnostics.append,
    )
    return scheduler, backend, results, diagnostics


class TestTick:
    def test_no_frame_is_a_no_op(self):
        scheduler, backend, results, diagnostics = make_scheduler(frame=False)

        result = asyncio.run(scheduler.tick())

        assert result is None
        assert backend.calls == 0
        assert results == []
        assert scheduler.stats.idle_ticks == 1

    def test_frame_is_classified_and_delivered(self):
        scheduler, backend, results, _ = make_scheduler()

        result = asyncio.run(scheduler.tick())

        assert results == [result]
        assert dict(result.per_class) == {"Phone": 70, "Charger": 20}
        assert result.best_label == "Phone"
        assert scheduler.stats.classified == 1
        assert scheduler.stats.last_latency_ms is not None

    def test_inference_error_does_not_stop_ticking(self):
        backend = FakeBackend([RuntimeError("bad frame"), [0.1, 0.8, 0.1]])
        scheduler, _, results, diagnostics = make_scheduler(backend)

        async def run_test():
            first = await scheduler.tick()
            second = await scheduler.tick()
            return first, second

        first, second = asyncio.run(run_test())

        assert first is None
        assert second.best_label == "Charger"
        assert len(results) == 1
        assert len(diagnostics) == 1
        assert isinstance(diagnostics[0], InferenceError)
        assert scheduler.stats.inference_errors == 1

    def test_classify_timeout_is_an_inference_error(self):
        backend = FakeBackend(delay=0.2)
        scheduler, _, results, diagnostics = make_scheduler(backend, classify_timeout=0.02)

        result = asyncio.run(scheduler.tick())

        assert result is None
        assert results == []
        assert isinstance(diagnostics[0], InferenceError)
        assert "timed out" in str(diagnostics[0])

    def test_malformed_set_reported_as_diagnostic(self):
        backend = FakeBackend([[2.0, 0.0, 0.0]])
        scheduler, _, results, diagnostics = make_scheduler(backend)

        result = asyncio.run(scheduler.tick())

        assert result.percent("Phone") == 100
        assert isinstance(diagnostics[0], MalformedPredictionSet)
        assert scheduler.stats.anomalies == 1

    def test_result_callback_error_is_contained(self):
        scheduler, _, _, _ = make_scheduler()

        def broken(result):
            raise RuntimeError("display gone")

        scheduler._on_result = broken
        result = asyncio.run(scheduler.tick())

        assert result is not None
        assert scheduler.stats.classified == 1


class TestRunAndStop:
    def test_results_arrive_in_order(self):
        scheduler, _, results, _ = make_scheduler(tick_hz=200.0)

        async def run_test():
            scheduler.start()
            await asyncio.sleep(0.1)
            await scheduler.stop()

        asyncio.run(run_test())

        assert len(results) >= 2
        sequences = [r.sequence for r in results]
        assert sequences == sorted(sequences)
        assert sequences[0] == 1

    def test_no_results_after_stop(self):
        scheduler, _, results, _ = make_scheduler(tick_hz=200.0)

        async def run_test():
            scheduler.start()
            await asyncio.sleep(0.05)
            await scheduler.stop()
            count = len(results)
            await asyncio.sleep(0.05)
            return count

        count = asyncio.run(run_test())
        assert len(results) == count
        assert not scheduler.is_running

    def test_in_flight_result_is_discarded(self):
        backend = FakeBackend(gate=threading.Event())
        scheduler, _, results, diagnostics = make_scheduler(backend)

        async def run_test():
            scheduler.start()
            while not backend.entered.is_set():
                await asyncio.sleep(0.005)
            stop_task = asyncio.create_task(scheduler.stop())
            await asyncio.sleep(0.02)
            assert not stop_task.done()
            backend.gate.set()
            await stop_task

        asyncio.run(run_test())

        assert results == []
        assert diagnostics == []
        assert scheduler.stats.discarded == 1

    def test_slow_classify_skips_boundaries(self):
        backend = FakeBackend(delay=0.05)
        scheduler, _, results, _ = make_scheduler(backend, tick_hz=100.0)

        async def run_test():
            scheduler.start()
            await asyncio.sleep(0.2)
            await scheduler.stop()

        asyncio.run(run_test())

        assert scheduler.stats.skipped_boundaries > 0
        # Ticks never overlap: one classify at a time means at most ~4 in 0.2s.
        assert backend.calls <= 5

    def test_tick_after_stop_is_a_no_op(self):
        scheduler, backend, results, _ = make_scheduler()

        async def run_test():
            scheduler.start()
            await scheduler.stop()
            return await scheduler.tick()

        assert asyncio.run(run_test()) is None

    def test_stop_before_start(self):
        scheduler, _, _, _ = make_scheduler()
        asyncio.run(scheduler.stop())
        assert not scheduler.is_running

    def test_non_numeric_scores_keep_loop_alive(self):
        backend = FakeBackend([[None, 0.5, 0.5], [0.7, 0.2, 0.1]])
        scheduler, _, results, diagnostics = make_scheduler(backend)

        async def run_test():
            scheduler.start()
            for _ in range(200):
                if results:
                    break
                await asyncio.sleep(0.01)
            running = scheduler.is_running
            await scheduler.stop()
            return running

        assert asyncio.run(run_test()) is True
        assert results
        assert isinstance(diagnostics[0], InferenceError)
        assert scheduler.stats.inference_errors == 1

    def test_unexpected_tick_error_is_reported_and_loop_continues(self):
        scheduler, _, results, diagnostics = make_scheduler()
        consume = scheduler.aggregator.consume
        calls = {"count": 0}

        def flaky_consume(predictions):
            calls["count"] += 1
            if calls["count"] == 1:
                raise RuntimeError("aggregator blew up")
            return consume(predictions)

        scheduler.aggregator.consume = flaky_consume

        async def run_test():
            scheduler.start()
            for _ in range(200):
                if results:
                    break
                await asyncio.sleep(0.01)
            await scheduler.stop()

        asyncio.run(run_test())

        assert results
        assert isinstance(diagnostics[0], InferenceError)
        assert "aggregator blew up" in str(diagnostics[0])
