r"""
Session controller: the public start/stop state machine.

    idle --start()--> starting --ok--> running --stop()--> stopping --> idle
                          \--error--> failed --start()--> starting ...

The controller owns the model handle, the capture session and the scheduler
of the current session as explicit fields. Model load and camera open run
concurrently during `starting`; if either fails the other is cancelled, any
acquired resource is released, and the error is raised to the caller of
start() after the state has moved to `failed`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from capture import CaptureSession, create_session_from_config
from errors import LiveClassifierError
from inference.model_handle import ModelHandle, ModelLoader, create_loader_from_config
from models.config import AggregationConfig, Config, SchedulerConfig
from models.prediction import AggregatedResult
from models.status import SchedulerStats, SessionState, SessionStatus
from pipeline.aggregator import PredictionAggregator
from pipeline.scheduler import InferenceScheduler

logger = logging.getLogger(__name__)

ResultCallback = Callable[[AggregatedResult], None]
StateCallback = Callable[[SessionState], None]
DiagnosticCallback = Callable[[LiveClassifierError], None]


def describe_error(error: BaseException) -> str:
    """Human-readable cause for the UI: 'DeviceUnavailableError: no camera'."""
    if isinstance(error, asyncio.TimeoutError):
        return f"TimeoutError: {error}" if str(error) else "TimeoutError: operation timed out"
    return f"{type(error).__name__}: {error}"


class SessionController:
    """
    Coordinates model, camera and scheduler for one detection session at a time.

    Args:
        capture_factory: Returns a fresh, unopened CaptureSession.
        model_loader: Loads a ModelHandle for a locator.
        model_locator: Locator passed to the loader.
        aggregation: Tracked labels and sum tolerance for each session's aggregator.
        scheduler: Scheduler cadence and timeouts.
        load_timeout: Seconds allowed for model load. None = no limit.
        open_timeout: Seconds allowed for camera open. None = no limit.
    """

    def __init__(
        self,
        capture_factory: Callable[[], CaptureSession],
        model_loader: ModelLoader,
        model_locator: str,
        aggregation: Optional[AggregationConfig] = None,
        scheduler: Optional[SchedulerConfig] = None,
        load_timeout: Optional[float] = None,
        open_timeout: Optional[float] = None,
    ):
        self._capture_factory = capture_factory
        self._loader = model_loader
        self._locator = model_locator
        self.aggregation = aggregation or AggregationConfig()
        self.scheduler_config = scheduler or SchedulerConfig()
        self.load_timeout = load_timeout
        self.open_timeout = open_timeout

        self._state = SessionState.IDLE
        self._last_error: Optional[str] = None
        self._model: Optional[ModelHandle] = None
        self._capture: Optional[CaptureSession] = None
        self._scheduler: Optional[InferenceScheduler] = None
        self._result: Optional[AggregatedResult] = None
        self._last_stats: Optional[SchedulerStats] = None

        self._start_task: Optional[asyncio.Task] = None
        self._abort_start = False
        self._start_settled: Optional[asyncio.Event] = None
        self._stop_settled: Optional[asyncio.Event] = None

        self._result_callbacks: List[ResultCallback] = []
        self._state_callbacks: List[StateCallback] = []
        self._diagnostic_callbacks: List[DiagnosticCallback] = []

    # ------------------------------------------------------------------
    # Read-only views

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def model(self) -> Optional[ModelHandle]:
        return self._model

    @property
    def capture(self) -> Optional[CaptureSession]:
        """Capture session of the running session, if any."""
        return self._capture

    @property
    def result(self) -> Optional[AggregatedResult]:
        """Latest result of the current session (None before the first one)."""
        return self._result

    def status(self) -> SessionStatus:
        stats = self._scheduler.stats if self._scheduler is not None else self._last_stats
        return SessionStatus(
            state=self._state,
            last_error=self._last_error,
            model_labels=list(self._model.labels) if self._model else [],
            tracked_labels=list(self.aggregation.tracked_labels),
            stats=stats,
        )

    # ------------------------------------------------------------------
    # Subscriptions

    def add_result_callback(self, callback: ResultCallback) -> Callable[[], None]:
        """Call `callback(result)` for every new AggregatedResult. Returns an unsubscribe function."""
        return self._subscribe(self._result_callbacks, callback)

    def add_state_callback(self, callback: StateCallback) -> Callable[[], None]:
        """Call `callback(state)` on every state transition. Returns an unsubscribe function."""
        return self._subscribe(self._state_callbacks, callback)

    def add_diagnostic_callback(self, callback: DiagnosticCallback) -> Callable[[], None]:
        """Call `callback(error)` for per-tick problems (InferenceError, MalformedPredictionSet)."""
        return self._subscribe(self._diagnostic_callbacks, callback)

    @staticmethod
    def _subscribe(callbacks: list, callback: Callable) -> Callable[[], None]:
        callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in callbacks:
                callbacks.remove(callback)
        return unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self, reload_model: bool = False) -> SessionState:
        """
        Start a detection session.

        Returns the resulting state. Calling start() while starting or
        running returns the current state without side effects.

        Raises:
            ModelLoadError, DeviceUnavailableError, DeviceBusyError, TimeoutError:
                The attempt failed; the controller is now `failed`.
        """
        if self._state in (SessionState.STARTING, SessionState.RUNNING):
            return self._state
        if self._state is SessionState.STOPPING and self._stop_settled is not None:
            await self._stop_settled.wait()
            if self._state in (SessionState.STARTING, SessionState.RUNNING):
                return self._state

        self._last_error = None
        self._abort_start = False
        self._start_settled = asyncio.Event()
        self._set_state(SessionState.STARTING)

        task = asyncio.create_task(self._acquire(reload_model), name="session-start")
        self._start_task = task
        try:
            return await self._finish_start(task)
        finally:
            self._start_task = None
            self._start_settled.set()

    async def _finish_start(self, task: asyncio.Task) -> SessionState:
        try:
            model, capture = await task
        except asyncio.CancelledError:
            self._set_state(SessionState.IDLE)
            if self._abort_start:
                logger.info("Session start aborted by stop()")
                return self._state
            raise
        except Exception as e:
            self._last_error = describe_error(e)
            logger.error(f"Session start failed: {self._last_error}")
            self._set_state(SessionState.FAILED)
            raise

        if self._abort_start:
            try:
                await self._close_capture(capture)
            finally:
                self._set_state(SessionState.IDLE)
            logger.info("Session start aborted by stop()")
            return self._state

        self._model = model
        self._capture = capture
        aggregator = PredictionAggregator(
            self.aggregation.tracked_labels,
            class_order=model.labels,
            sum_tolerance=self.aggregation.sum_tolerance,
        )
        self._result = None
        self._scheduler = InferenceScheduler(
            capture,
            model,
            aggregator,
            self.scheduler_config,
            on_result=self._emit_result,
            on_diagnostic=self._emit_diagnostic,
        )
        self._scheduler.start()
        self._set_state(SessionState.RUNNING)
        return self._state

    async def stop(self) -> SessionState:
        """
        Stop the current session and release the camera.

        No-op from idle or failed. From starting, aborts the attempt. No
        result callback fires after this returns.
        """
        if self._state in (SessionState.IDLE, SessionState.FAILED):
            return self._state

        if self._state is SessionState.STARTING:
            self._abort_start = True
            if self._start_task is not None:
                self._start_task.cancel()
            if self._start_settled is not None:
                await self._start_settled.wait()
            return self._state

        if self._state is SessionState.STOPPING:
            if self._stop_settled is not None:
                await self._stop_settled.wait()
            return self._state

        self._stop_settled = asyncio.Event()
        self._set_state(SessionState.STOPPING)
        scheduler, capture = self._scheduler, self._capture
        try:
            if scheduler is not None:
                await scheduler.stop()
                self._last_stats = scheduler.stats
        except Exception as e:
            logger.warning(f"Error stopping scheduler: {e}")
        finally:
            self._scheduler = None
            self._capture = None
            await self._close_capture(capture)
            self._set_state(SessionState.IDLE)
            self._stop_settled.set()
        return self._state

    async def shutdown(self) -> None:
        """Stop any session and drop the cached model."""
        await self.stop()
        self._model = None

    # ------------------------------------------------------------------
    # Internals

    async def _acquire(self, reload_model: bool) -> Tuple[ModelHandle, CaptureSession]:
        """Load the model (unless cached) and open the camera concurrently."""
        capture = self._capture_factory()
        steps: Dict[str, asyncio.Task] = {}
        if reload_model or self._model is None:
            steps["model"] = asyncio.create_task(self._load_model(), name="model-load")
        steps["camera"] = asyncio.create_task(self._open_capture(capture), name="camera-open")

        try:
            done, _ = await asyncio.wait(steps.values(), return_when=asyncio.FIRST_EXCEPTION)
            for name, step in steps.items():
                if step in done and step.exception() is not None:
                    logger.warning(f"Start step '{name}' failed: {describe_error(step.exception())}")
                    raise step.exception()
            model = steps["model"].result() if "model" in steps else self._model
            return model, capture
        except BaseException:
            for step in steps.values():
                step.cancel()
            await asyncio.gather(*steps.values(), return_exceptions=True)
            await self._close_capture(capture)
            raise

    async def _load_model(self) -> ModelHandle:
        if self.load_timeout:
            return await asyncio.wait_for(self._loader.load(self._locator), timeout=self.load_timeout)
        return await self._loader.load(self._locator)

    async def _open_capture(self, capture: CaptureSession) -> None:
        if self.open_timeout:
            await asyncio.wait_for(capture.open(), timeout=self.open_timeout)
        else:
            await capture.open()

    async def _close_capture(self, capture: Optional[CaptureSession]) -> None:
        if capture is None:
            return
        try:
            await capture.close()
        except Exception as e:
            logger.warning(f"Error closing capture session: {e}")

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.info(f"Session state: {self._state.value} -> {state.value}")
        self._state = state
        for callback in list(self._state_callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.warning(f"State callback error: {e}")

    def _emit_result(self, result: AggregatedResult) -> None:
        self._result = result
        for callback in list(self._result_callbacks):
            try:
                callback(result)
            except Exception as e:
                logger.warning(f"Result callback error: {e}")

    def _emit_diagnostic(self, error: LiveClassifierError) -> None:
        for callback in list(self._diagnostic_callbacks):
            try:
                callback(error)
            except Exception as e:
                logger.warning(f"Diagnostic callback error: {e}")


def create_controller_from_config(config: Dict[str, Any]) -> SessionController:
    """
    Factory function to create a SessionController from the config dict.

    Args:
        config: Full application config dict.
    """
    cfg = Config.from_dict(config)
    camera_cfg = cfg.camera.to_dict()

    return SessionController(
        capture_factory=lambda: create_session_from_config(camera_cfg, source_id="webcam"),
        model_loader=create_loader_from_config(cfg.model.to_dict()),
        model_locator=cfg.model.locator,
        aggregation=cfg.aggregation,
        scheduler=cfg.scheduler,
        load_timeout=cfg.model.load_timeout,
        open_timeout=cfg.camera.open_timeout,
    )
