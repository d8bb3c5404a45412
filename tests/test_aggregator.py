"""
Tests for PredictionAggregator: percentages, best label and repair of bad input.
"""

import math

import pytest

from errors import MalformedPredictionSet
from models.prediction import PredictionSet
from pipeline.aggregator import PredictionAggregator, to_percent


def ps(*pairs):
    return PredictionSet.from_pairs(pairs)


class TestToPercent:
    @pytest.mark.parametrize("probability, expected", [
        (0.0, 0),
        (1.0, 100),
        (0.7, 70),
        (0.125, 13),
        (0.004, 0),
        (0.005, 1),
    ])
    def test_rounds_half_up(self, probability, expected):
        assert to_percent(probability) == expected

    def test_clamps(self):
        assert to_percent(1.5) == 100
        assert to_percent(-0.2) == 0


class TestAggregation:
    def test_initial_result_is_all_zero(self):
        agg = PredictionAggregator(["Phone", "Charger"])
        assert dict(agg.result.per_class) == {"Phone": 0, "Charger": 0}
        assert agg.result.best_label is None
        assert agg.result.sequence == 0

    def test_two_tick_scenario(self):
        """A tracked label absent from a later set keeps its previous percent."""
        agg = PredictionAggregator(["Phone", "Charger"])

        first = agg.consume(ps(("Phone", 0.7), ("Charger", 0.2), ("Other", 0.1)))
        assert dict(first.per_class) == {"Phone": 70, "Charger": 20}
        assert first.best_label == "Phone"

        second = agg.consume(ps(("Charger", 0.9), ("Other", 0.1)))
        assert dict(second.per_class) == {"Phone": 70, "Charger": 90}
        assert second.best_label == "Charger"
        assert second.sequence == first.sequence + 1

    def test_best_label_may_be_untracked(self):
        agg = PredictionAggregator(["Phone", "Charger"])
        result = agg.consume(ps(("Phone", 0.1), ("Charger", 0.1), ("Other", 0.8)))
        assert result.best_label == "Other"
        assert "Other" not in result.per_class

    def test_results_are_independent_snapshots(self):
        agg = PredictionAggregator(["Phone"])
        first = agg.consume(ps(("Phone", 0.3), ("Other", 0.7)))
        agg.consume(ps(("Phone", 0.9), ("Other", 0.1)))
        assert first.percent("Phone") == 30

    def test_empty_set_keeps_percents_and_has_no_best(self):
        agg = PredictionAggregator(["Phone"])
        agg.consume(ps(("Phone", 0.6), ("Other", 0.4)))
        result = agg.consume(PredictionSet())
        assert result.percent("Phone") == 60
        assert result.best_label is None


class TestBestLabelTies:
    def test_tie_goes_to_class_order(self):
        agg = PredictionAggregator(["A", "B"], class_order=["B", "A"])
        result = agg.consume(ps(("A", 0.5), ("B", 0.5)))
        assert result.best_label == "B"

    def test_tie_without_class_order_goes_to_set_order(self):
        agg = PredictionAggregator(["A", "B"])
        result = agg.consume(ps(("A", 0.5), ("B", 0.5)))
        assert result.best_label == "A"

    def test_known_labels_win_ties_over_unknown(self):
        agg = PredictionAggregator(["A"], class_order=["A"])
        result = agg.consume(ps(("Z", 0.5), ("A", 0.5)))
        assert result.best_label == "A"

    def test_all_zero_has_no_best(self):
        anomalies = []
        agg = PredictionAggregator(["A", "B"], on_anomaly=anomalies.append)
        result = agg.consume(ps(("A", 0.0), ("B", 0.0)))
        assert result.best_label is None
        assert dict(result.per_class) == {"A": 0, "B": 0}
        assert "all probabilities are zero" in anomalies[0].problems


class TestMalformedSets:
    def setup_method(self):
        self.anomalies = []
        self.agg = PredictionAggregator(
            ["Phone", "Charger"],
            class_order=["Phone", "Charger", "Other"],
            on_anomaly=self.anomalies.append,
        )

    def test_well_formed_set_reports_nothing(self):
        self.agg.consume(ps(("Phone", 0.5), ("Charger", 0.3), ("Other", 0.2)))
        assert self.anomalies == []

    def test_sum_within_tolerance_is_accepted(self):
        result = self.agg.consume(ps(("Phone", 0.5004), ("Charger", 0.3), ("Other", 0.2)))
        assert self.anomalies == []
        assert result.percent("Phone") == 50

    def test_sum_off_is_renormalized(self):
        result = self.agg.consume(ps(("Phone", 1.0), ("Charger", 0.6), ("Other", 0.4)))
        assert result.percent("Phone") == 50
        assert result.percent("Charger") == 30
        assert len(self.anomalies) == 1
        assert isinstance(self.anomalies[0], MalformedPredictionSet)
        assert any("renormalized" in p for p in self.anomalies[0].problems)

    def test_negative_and_nan_are_zeroed(self):
        result = self.agg.consume(ps(("Phone", -0.5), ("Charger", math.nan), ("Other", 1.0)))
        assert result.percent("Phone") == 0
        assert result.percent("Charger") == 0
        assert result.best_label == "Other"
        problems = self.anomalies[0].problems
        assert any("negative" in p for p in problems)
        assert any("non-finite" in p for p in problems)

    def test_above_one_is_clamped(self):
        result = self.agg.consume(ps(("Phone", 3.0), ("Charger", 0.0), ("Other", 0.0)))
        assert result.percent("Phone") == 100
        assert any("above 1" in p for p in self.anomalies[0].problems)

    def test_duplicate_keeps_first(self):
        result = self.agg.consume(ps(("Phone", 0.6), ("Phone", 0.1), ("Charger", 0.3), ("Other", 0.1)))
        assert result.percent("Phone") == 60
        assert any("duplicate" in p for p in self.anomalies[0].problems)

    def test_missing_labels_reported(self):
        self.agg.consume(ps(("Phone", 1.0)))
        assert any("missing labels" in p for p in self.anomalies[0].problems)

    def test_anomaly_callback_error_does_not_break_consume(self):
        def broken(anomaly):
            raise RuntimeError("listener down")

        self.agg.on_anomaly = broken
        result = self.agg.consume(ps(("Phone", 2.0), ("Charger", 0.0), ("Other", 0.0)))
        assert result.percent("Phone") == 100
