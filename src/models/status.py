"""
Session state and status snapshot models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SessionState(str, Enum):
    """Lifecycle states of a detection session."""
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        """True while a session holds (or is acquiring) resources."""
        return self in (SessionState.STARTING, SessionState.RUNNING, SessionState.STOPPING)


@dataclass
class SchedulerStats:
    """
    Runtime statistics for the inference scheduler.

    Attributes:
        ticks: Ticks executed (including no-op ticks).
        idle_ticks: Ticks with no frame available yet.
        classified: Completed classify calls whose result was aggregated.
        skipped_boundaries: Cadence boundaries skipped while classify was in flight.
        discarded: Classify results dropped because the scheduler was stopping.
        inference_errors: Failed classify calls.
        anomalies: Prediction sets the aggregator had to repair.
        last_latency_ms: Wall time of the most recent classify call.
        start_time: Unix timestamp when the scheduler started.
    """
    ticks: int = 0
    idle_ticks: int = 0
    classified: int = 0
    skipped_boundaries: int = 0
    discarded: int = 0
    inference_errors: int = 0
    anomalies: int = 0
    last_latency_ms: Optional[float] = None
    start_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticks": self.ticks,
            "idle_ticks": self.idle_ticks,
            "classified": self.classified,
            "skipped_boundaries": self.skipped_boundaries,
            "discarded": self.discarded,
            "inference_errors": self.inference_errors,
            "anomalies": self.anomalies,
            "last_latency_ms": self.last_latency_ms,
            "start_time": self.start_time,
        }


@dataclass
class SessionStatus:
    """
    Aggregate session status for monitoring/UI.

    Attributes:
        state: Current session state.
        last_error: Human-readable cause of the last failed start, if any.
        model_labels: Class labels of the loaded model (empty if none loaded).
        tracked_labels: Labels the aggregator reports percentages for.
        stats: Scheduler statistics of the current (or last) session.
    """
    state: SessionState
    last_error: Optional[str] = None
    model_labels: List[str] = field(default_factory=list)
    tracked_labels: List[str] = field(default_factory=list)
    stats: Optional[SchedulerStats] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "state": self.state.value,
            "last_error": self.last_error,
            "model_labels": list(self.model_labels),
            "tracked_labels": list(self.tracked_labels),
            "stats": self.stats.to_dict() if self.stats else None,
        }

    @property
    def is_running(self) -> bool:
        return self.state == SessionState.RUNNING
