"""
Prediction models: per-class scores from the classifier and the aggregated
result handed to display consumers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple


@dataclass(frozen=True)
class ClassPrediction:
    """
    A single class score.

    Attributes:
        label: Class name as declared in the model metadata.
        probability: Score in [0, 1].
    """
    label: str
    probability: float


@dataclass(frozen=True)
class PredictionSet:
    """
    Ordered scores for one frame, one entry per known class label.

    Probabilities are expected to sum to ~1. The aggregator repairs sets
    that don't.
    """
    predictions: Tuple[ClassPrediction, ...] = ()

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, float]]) -> "PredictionSet":
        """Adapter: build from (label, probability) tuples."""
        return cls(tuple(ClassPrediction(label, float(p)) for label, p in pairs))

    @classmethod
    def from_scores(cls, labels: Sequence[str], scores: Sequence[float]) -> "PredictionSet":
        """Zip model-order labels with a score vector of the same length."""
        if len(labels) != len(scores):
            raise ValueError(f"{len(scores)} scores for {len(labels)} labels")
        return cls(tuple(ClassPrediction(label, float(s)) for label, s in zip(labels, scores)))

    def __iter__(self) -> Iterator[ClassPrediction]:
        return iter(self.predictions)

    def __len__(self) -> int:
        return len(self.predictions)

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(p.label for p in self.predictions)

    @property
    def total(self) -> float:
        return sum(p.probability for p in self.predictions)

    def get(self, label: str) -> Optional[float]:
        """Probability for label, or None if the set doesn't contain it."""
        for p in self.predictions:
            if p.label == label:
                return p.probability
        return None

    def to_list(self) -> list:
        return [{"label": p.label, "probability": p.probability} for p in self.predictions]


@dataclass(frozen=True)
class AggregatedResult:
    """
    Display-ready reduction of one PredictionSet.

    Attributes:
        per_class: Tracked label -> integer percent (0-100). Read-only.
        best_label: Highest-probability label across all classes, or None.
        sequence: Tick order of the result within its session (1-based).
        timestamp: Unix timestamp when the result was produced.
    """
    per_class: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    best_label: Optional[str] = None
    sequence: int = 0
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def create(
        cls,
        per_class: Dict[str, int],
        best_label: Optional[str],
        sequence: int,
        timestamp: Optional[float] = None,
    ) -> "AggregatedResult":
        """Build a result whose per_class mapping can't be mutated afterwards."""
        return cls(
            per_class=MappingProxyType(dict(per_class)),
            best_label=best_label,
            sequence=sequence,
            timestamp=time.time() if timestamp is None else timestamp,
        )

    def percent(self, label: str) -> int:
        return self.per_class.get(label, 0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "per_class": dict(self.per_class),
            "best_label": self.best_label,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
        }
