"""
Smoke tests for typed models and adapters.
"""

import time
import pytest
import numpy as np

from models.frame import FrameData
from models.prediction import ClassPrediction, PredictionSet, AggregatedResult
from models.status import SessionState, SessionStatus, SchedulerStats
from models.config import (
    Config,
    CameraConfig,
    ModelConfig,
    AggregationConfig,
    SchedulerConfig,
)


class TestFrameData:
    def test_from_numpy(self):
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        fd = FrameData.from_numpy(frame, timestamp=1.5, frame_index=7, source="webcam")
        assert fd.width == 640
        assert fd.height == 480
        assert fd.size == (640, 480)
        assert fd.frame_index == 7
        assert fd.source == "webcam"

    def test_is_immutable(self):
        fd = FrameData.from_numpy(np.zeros((2, 2, 3), dtype=np.uint8), timestamp=0.0)
        with pytest.raises(AttributeError):
            fd.frame_index = 3


class TestPredictionSet:
    def test_from_pairs_preserves_order(self):
        ps = PredictionSet.from_pairs([("Phone", 0.7), ("Charger", 0.2), ("Other", 0.1)])
        assert ps.labels == ("Phone", "Charger", "Other")
        assert len(ps) == 3
        assert ps.get("Charger") == pytest.approx(0.2)
        assert ps.get("Cable") is None
        assert ps.total == pytest.approx(1.0)

    def test_from_scores(self):
        ps = PredictionSet.from_scores(["a", "b"], np.array([0.25, 0.75], dtype=np.float32))
        assert list(ps) == [ClassPrediction("a", 0.25), ClassPrediction("b", 0.75)]
        assert all(isinstance(p.probability, float) for p in ps)

    def test_from_scores_length_mismatch(self):
        with pytest.raises(ValueError):
            PredictionSet.from_scores(["a", "b"], [1.0])

    def test_to_list(self):
        ps = PredictionSet.from_pairs([("x", 1.0)])
        assert ps.to_list() == [{"label": "x", "probability": 1.0}]


class TestAggregatedResult:
    def test_per_class_is_read_only(self):
        result = AggregatedResult.create({"Phone": 70}, "Phone", sequence=1)
        with pytest.raises(TypeError):
            result.per_class["Phone"] = 10

    def test_create_copies_input(self):
        source = {"Phone": 70}
        result = AggregatedResult.create(source, "Phone", sequence=1)
        source["Phone"] = 0
        assert result.percent("Phone") == 70

    def test_percent_of_untracked_label_is_zero(self):
        result = AggregatedResult.create({"Phone": 70}, "Phone", sequence=1)
        assert result.percent("Charger") == 0

    def test_to_dict(self):
        result = AggregatedResult.create({"Phone": 70, "Charger": 20}, "Phone", sequence=3, timestamp=12.0)
        assert result.to_dict() == {
            "per_class": {"Phone": 70, "Charger": 20},
            "best_label": "Phone",
            "sequence": 3,
            "timestamp": 12.0,
        }


class TestSessionStatus:
    def test_active_states(self):
        assert SessionState.STARTING.is_active
        assert SessionState.RUNNING.is_active
        assert SessionState.STOPPING.is_active
        assert not SessionState.IDLE.is_active
        assert not SessionState.FAILED.is_active

    def test_to_dict(self):
        status = SessionStatus(
            state=SessionState.RUNNING,
            model_labels=["Phone", "Charger", "Other"],
            tracked_labels=["Phone", "Charger"],
            stats=SchedulerStats(ticks=5, classified=4, start_time=time.time()),
        )
        d = status.to_dict()
        assert d["state"] == "running"
        assert d["last_error"] is None
        assert d["stats"]["ticks"] == 5
        assert status.is_running

    def test_to_dict_without_stats(self):
        d = SessionStatus(state=SessionState.FAILED, last_error="ModelLoadError: boom").to_dict()
        assert d["stats"] is None
        assert d["last_error"] == "ModelLoadError: boom"


class TestConfig:
    def test_defaults(self):
        cfg = Config.from_dict({})
        assert cfg.camera.resolution == [400, 400]
        assert cfg.camera.mirror is True
        assert cfg.aggregation.tracked_labels == ["Phone", "Charger"]
        assert cfg.scheduler.tick_hz == 30.0

    def test_camera_from_dict(self):
        cam = CameraConfig.from_dict({"device_id": "rtsp://x", "rotate": None, "open_timeout": 5})
        assert cam.device_id == "rtsp://x"
        assert cam.rotate == 0
        assert cam.open_timeout == 5

    def test_model_from_dict(self):
        model = ModelConfig.from_dict({"locator": "https://example.com/m", "apply_softmax": True})
        assert model.locator == "https://example.com/m"
        assert model.apply_softmax is True
        assert model.model_file == "model.onnx"

    def test_tick_interval(self):
        assert SchedulerConfig(tick_hz=20).tick_interval == pytest.approx(0.05)

    def test_round_trip(self, valid_config):
        cfg = Config.from_dict(valid_config)
        again = Config.from_dict(cfg.to_dict())
        assert again == cfg

    def test_aggregation_from_dict(self):
        agg = AggregationConfig.from_dict({"tracked_labels": ["Cable"]})
        assert agg.tracked_labels == ["Cable"]
        assert agg.sum_tolerance == pytest.approx(1e-3)
