"""
Pipeline module for the live classifier.

The pipeline turns camera frames into display results:
- InferenceScheduler pulls the current frame and classifies it on a cadence
- PredictionAggregator reduces class scores to tracked percentages and a best guess
"""

from .aggregator import PredictionAggregator, to_percent
from .scheduler import InferenceScheduler

__all__ = [
    "PredictionAggregator",
    "InferenceScheduler",
    "to_percent",
]
