"""
Inference scheduler: the capture -> classify -> aggregate loop.

One asyncio task runs tick() at a fixed cadence. A tick that is still
classifying when the next cadence boundary passes simply causes that
boundary to be skipped; ticks never overlap and never queue up.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable, Optional

from capture.base import CaptureSession
from errors import InferenceError, LiveClassifierError
from inference.model_handle import ModelHandle
from models.config import SchedulerConfig
from models.prediction import AggregatedResult
from models.status import SchedulerStats
from .aggregator import PredictionAggregator

logger = logging.getLogger(__name__)

ResultCallback = Callable[[AggregatedResult], None]
DiagnosticCallback = Callable[[LiveClassifierError], None]


class InferenceScheduler:
    """
    Drives repeated inference against a capture session.

    Example:
        scheduler = InferenceScheduler(capture, model, aggregator, SchedulerConfig(), on_result)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        capture: CaptureSession,
        model: ModelHandle,
        aggregator: PredictionAggregator,
        config: SchedulerConfig,
        on_result: ResultCallback,
        on_diagnostic: Optional[DiagnosticCallback] = None,
    ):
        self.capture = capture
        self.model = model
        self.aggregator = aggregator
        self.config = config
        self._on_result = on_result
        self._on_diagnostic = on_diagnostic
        self.aggregator.on_anomaly = self._report_anomaly
        self.stats = SchedulerStats()
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None
        self._last_stats_log = time.time()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking in a background task."""
        if self.is_running:
            return
        self._cancelled = False
        self.stats = SchedulerStats(start_time=time.time())
        self._last_stats_log = time.time()
        self._task = asyncio.create_task(self.run(), name="inference-scheduler")

    async def stop(self) -> None:
        """
        Stop ticking.

        An in-flight classify call is allowed to finish; its result is
        discarded. No result callback fires after this returns.
        """
        self._cancelled = True
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Scheduler loop ended with error: {e}")
        logger.info(
            f"Scheduler stopped: ticks={self.stats.ticks}, classified={self.stats.classified}, "
            f"errors={self.stats.inference_errors}, discarded={self.stats.discarded}"
        )

    async def run(self) -> None:
        """Tick until stopped."""
        loop = asyncio.get_running_loop()
        interval = self.config.tick_interval
        logger.info(f"Scheduler started: tick_hz={self.config.tick_hz}, model={self.model.name}")

        while not self._cancelled:
            started = loop.time()
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Scheduler tick failed: {e}")
                self.stats.inference_errors += 1
                self._diagnose(InferenceError(f"Tick failed: {e}"))
            elapsed = loop.time() - started

            # Sleep to the next boundary that hasn't passed yet.
            boundaries = max(1, math.ceil(elapsed / interval))
            if elapsed > interval:
                self.stats.skipped_boundaries += boundaries - 1
            await asyncio.sleep(max(0.0, boundaries * interval - elapsed))
            self._log_periodic_stats()

    async def tick(self) -> Optional[AggregatedResult]:
        """
        One capture -> classify -> aggregate cycle.

        Returns the new result, or None if the tick was a no-op (no frame yet,
        classify failed, or the scheduler was stopped mid-flight).
        """
        if self._cancelled:
            return None
        self.stats.ticks += 1

        frame = self.capture.current_frame()
        if frame is None:
            self.stats.idle_ticks += 1
            return None

        started = time.perf_counter()
        try:
            if self.config.classify_timeout:
                predictions = await asyncio.wait_for(
                    self.model.classify(frame), timeout=self.config.classify_timeout
                )
            else:
                predictions = await self.model.classify(frame)
        except asyncio.TimeoutError:
            self._inference_failed(
                InferenceError(f"Classify timed out after {self.config.classify_timeout}s"),
                frame.frame_index,
            )
            return None
        except InferenceError as e:
            self._inference_failed(e, frame.frame_index)
            return None
        finally:
            self.stats.last_latency_ms = (time.perf_counter() - started) * 1000.0

        if self._cancelled:
            self.stats.discarded += 1
            return None

        result = self.aggregator.consume(predictions)
        self.stats.classified += 1
        try:
            self._on_result(result)
        except Exception as e:
            logger.warning(f"Result callback error: {e}")
        return result

    def _report_anomaly(self, anomaly: LiveClassifierError) -> None:
        self.stats.anomalies += 1
        self._diagnose(anomaly)

    def _inference_failed(self, error: InferenceError, frame_index: int) -> None:
        if self._cancelled:
            self.stats.discarded += 1
            return
        self.stats.inference_errors += 1
        logger.warning(f"Inference failed on frame {frame_index}: {error}")
        self._diagnose(error)

    def _diagnose(self, error: LiveClassifierError) -> None:
        if self._on_diagnostic is None:
            return
        try:
            self._on_diagnostic(error)
        except Exception as e:
            logger.warning(f"Diagnostic callback error: {e}")

    def _log_periodic_stats(self) -> None:
        now = time.time()
        if now - self._last_stats_log < self.config.stats_log_interval:
            return
        self._last_stats_log = now
        latency = self.stats.last_latency_ms
        latency_str = f"{latency:.1f}" if latency is not None else "n/a"
        logger.info(
            f"Scheduler stats: ticks={self.stats.ticks}, classified={self.stats.classified}, "
            f"idle={self.stats.idle_ticks}, skipped={self.stats.skipped_boundaries}, "
            f"errors={self.stats.inference_errors}, anomalies={self.stats.anomalies}, "
            f"latency_ms={latency_str}"
        )
