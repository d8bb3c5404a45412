"""
Prediction aggregation: turn one frame's class scores into display values.

The aggregator keeps only its previous result. A tracked label missing from
a prediction set keeps its previous percentage, so a single bad frame does
not make the display flicker to zero.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from errors import MalformedPredictionSet
from models.prediction import AggregatedResult, PredictionSet

logger = logging.getLogger(__name__)

AnomalyCallback = Callable[[MalformedPredictionSet], None]


def to_percent(probability: float) -> int:
    """Round half up to an integer percent in [0, 100]."""
    return max(0, min(100, int(math.floor(probability * 100 + 0.5))))


class PredictionAggregator:
    """
    Reduce PredictionSets to AggregatedResults.

    Args:
        tracked_labels: Labels that get a percentage in every result.
        class_order: Label order from the loaded model; breaks best-label ties
            and defines which labels a complete set must contain.
        sum_tolerance: Allowed deviation of the probability sum from 1.
        on_anomaly: Called with a MalformedPredictionSet when input had to be repaired.
    """

    def __init__(
        self,
        tracked_labels: Sequence[str],
        class_order: Sequence[str] = (),
        sum_tolerance: float = 1e-3,
        on_anomaly: Optional[AnomalyCallback] = None,
    ):
        self.tracked_labels: Tuple[str, ...] = tuple(tracked_labels)
        self.class_order: Tuple[str, ...] = tuple(class_order)
        self.sum_tolerance = sum_tolerance
        self._rank = {label: i for i, label in enumerate(self.class_order)}
        self.on_anomaly = on_anomaly
        self._sequence = 0
        self._result = AggregatedResult.create(
            {label: 0 for label in self.tracked_labels}, None, sequence=0
        )

    @property
    def result(self) -> AggregatedResult:
        """The most recent result (all zeros before the first consume)."""
        return self._result

    def consume(self, predictions: PredictionSet) -> AggregatedResult:
        entries, problems = self._sanitize(predictions)
        probs = dict(entries)

        per_class: Dict[str, int] = dict(self._result.per_class)
        for label in self.tracked_labels:
            if label in probs:
                per_class[label] = to_percent(probs[label])

        best_label = self._best_label(entries)

        self._sequence += 1
        result = AggregatedResult.create(per_class, best_label, sequence=self._sequence)
        self._result = result

        if problems:
            self._report(problems)
        return result

    def _sanitize(self, predictions: PredictionSet) -> Tuple[List[Tuple[str, float]], List[str]]:
        """Clamp, dedupe and renormalize; return (label, probability) pairs plus problems found."""
        problems: List[str] = []
        entries: List[Tuple[str, float]] = []
        seen = set()

        for p in predictions:
            if p.label in seen:
                problems.append(f"duplicate label {p.label!r}")
                continue
            seen.add(p.label)

            value = p.probability
            if not math.isfinite(value):
                problems.append(f"non-finite probability for {p.label!r}")
                value = 0.0
            elif value < 0.0:
                problems.append(f"negative probability for {p.label!r}")
                value = 0.0
            elif value > 1.0:
                problems.append(f"probability above 1 for {p.label!r}")
                value = 1.0
            entries.append((p.label, value))

        missing = [label for label in self.class_order if label not in seen]
        if missing:
            problems.append(f"missing labels {missing}")

        total = sum(v for _, v in entries)
        if entries and abs(total - 1.0) > self.sum_tolerance:
            if total > 0.0:
                problems.append(f"probabilities sum to {total:.4f}, renormalized")
                entries = [(label, v / total) for label, v in entries]
            else:
                problems.append("all probabilities are zero")

        return entries, problems

    def _best_label(self, entries: List[Tuple[str, float]]) -> Optional[str]:
        """Strictly highest probability; ties go to the earliest label in class order."""
        fallback = len(self._rank)
        ranked = sorted(
            enumerate(entries),
            key=lambda item: (self._rank.get(item[1][0], fallback), item[0]),
        )
        best_label: Optional[str] = None
        best_p = 0.0
        for _, (label, p) in ranked:
            if p > best_p:
                best_label, best_p = label, p
        return best_label

    def _report(self, problems: List[str]) -> None:
        anomaly = MalformedPredictionSet("; ".join(problems), problems)
        logger.warning(f"Malformed prediction set (result #{self._sequence}): {anomaly}")
        if self.on_anomaly is None:
            return
        try:
            self.on_anomaly(anomaly)
        except Exception as e:
            logger.warning(f"Anomaly callback error: {e}")
