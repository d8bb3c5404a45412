"""
Typed models for the live classifier application.

Use the adapter functions to convert from config dicts and raw score pairs.
"""

from .frame import FrameData
from .prediction import ClassPrediction, PredictionSet, AggregatedResult
from .status import SessionState, SessionStatus, SchedulerStats
from .config import (
    Config,
    CameraConfig,
    ModelConfig,
    AggregationConfig,
    SchedulerConfig,
    WebConfig,
)

__all__ = [
    # Frame
    "FrameData",
    # Predictions
    "ClassPrediction",
    "PredictionSet",
    "AggregatedResult",
    # Status
    "SessionState",
    "SessionStatus",
    "SchedulerStats",
    # Config
    "Config",
    "CameraConfig",
    "ModelConfig",
    "AggregationConfig",
    "SchedulerConfig",
    "WebConfig",
]
