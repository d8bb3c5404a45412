from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class SchedulerStatsResponse(BaseModel):
    ticks: int = 0
    idle_ticks: int = 0
    classified: int = 0
    skipped_boundaries: int = 0
    discarded: int = 0
    inference_errors: int = 0
    anomalies: int = 0
    last_latency_ms: Optional[float] = None
    start_time: Optional[float] = None


class SessionStatusResponse(BaseModel):
    state: str = Field(..., description="idle|starting|running|stopping|failed")
    last_error: Optional[str] = Field(None, description="Cause of the last failed start")
    model_labels: List[str] = Field(default_factory=list)
    tracked_labels: List[str] = Field(default_factory=list)
    stats: Optional[SchedulerStatsResponse] = None


class AggregatedResultResponse(BaseModel):
    """
    Display values from the most recent classified frame.
    """
    per_class: Dict[str, int] = Field(..., description="Tracked label -> integer percent 0..100")
    best_label: Optional[str] = Field(None, description="Label with the highest probability")
    sequence: int = Field(..., description="Monotonic result counter within the session")
    timestamp: float


class DiagnosticResponse(BaseModel):
    kind: str
    message: str
    problems: List[str] = Field(default_factory=list)
    timestamp: float


class HealthResponse(BaseModel):
    status: str = Field(..., description="ok")
    session_state: str
    uptime_seconds: int
    platform: str
    python: str
    versions: Dict[str, str] = Field(default_factory=dict, description="Library versions")
    log_path: Optional[str] = None
    model_locator: Optional[str] = None
    diagnostics: List[DiagnosticResponse] = Field(default_factory=list)
    timestamp: float


class StateMessage(BaseModel):
    type: Literal["state"] = "state"
    state: str


class ResultMessage(AggregatedResultResponse):
    type: Literal["result"] = "result"


class DiagnosticMessage(DiagnosticResponse):
    type: Literal["diagnostic"] = "diagnostic"
