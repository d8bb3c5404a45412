"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
import sys
import threading
import time

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from capture.base import CaptureConstraints, CaptureSession
from inference.model_handle import ModelLoader
from inference.model_source import ModelAssets


LABELS = ["Phone", "Charger", "Other"]


class FakeCaptureSession(CaptureSession):
    """
    In-memory camera.

    Serves copies of `frame` (or None while `frame` is None). Open can be
    delayed or made to fail; open/read/release calls are counted.
    """

    def __init__(self, frame=None, fail_open=None, open_delay=0.0, source_id="fake", refresh_interval=0.01):
        super().__init__(CaptureConstraints(
            source_id=source_id,
            device_id="fake",
            resolution=None,
            refresh_interval=refresh_interval,
        ))
        self.frame = frame
        self.fail_open = fail_open
        self.open_delay = open_delay
        self.open_calls = 0
        self.read_calls = 0
        self.release_calls = 0

    async def _open_device(self):
        self.open_calls += 1
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.fail_open is not None:
            raise self.fail_open

    def _read_device(self):
        self.read_calls += 1
        return None if self.frame is None else self.frame.copy()

    def _release_device(self):
        self.release_calls += 1


class FakeBackend:
    """
    Classifier backend returning scripted score vectors.

    Each predict() pops the next entry of `outputs` (the last one repeats).
    An entry that is an Exception is raised. `gate` (threading.Event), when
    set, makes predict() block until the event is set.
    """

    def __init__(self, outputs=None, delay=0.0, gate=None):
        self.outputs = list(outputs or [[0.7, 0.2, 0.1]])
        self.delay = delay
        self.gate = gate
        self.calls = 0
        self.entered = threading.Event()

    def predict(self, frame):
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        if self.delay:
            time.sleep(self.delay)
        output = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(output, Exception):
            raise output
        return output


class FakeModelSource:
    """ModelSource with no files: returns metadata directly, optionally slow or failing."""

    def __init__(self, labels=None, fail=None, delay=0.0):
        self.labels = list(LABELS if labels is None else labels)
        self.fail = fail
        self.delay = delay
        self.fetch_calls = 0
        self.completed = 0
        self.cancelled = 0

    async def fetch(self, locator):
        self.fetch_calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.fail is not None:
            raise self.fail
        self.completed += 1
        return ModelAssets(locator=locator, model_path="fake.onnx", metadata={
            "labels": list(self.labels),
            "modelName": "fake-model",
        })


def make_loader(source=None, backend=None):
    """ModelLoader wired to fakes; returns (loader, source, backend)."""
    source = source or FakeModelSource()
    backend = backend or FakeBackend()
    return ModelLoader(source, backend_factory=lambda assets: backend), source, backend


@pytest.fixture(autouse=True)
def reset_capture_registry():
    """No test may leak camera exclusivity into another."""
    CaptureSession._active = None
    yield
    CaptureSession._active = None


@pytest.fixture
def frame():
    return np.full((8, 8, 3), 127, dtype=np.uint8)


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
camera:
  backend: "opencv"
  device_id: 0
  resolution: [400, 400]
  mirror: true

model:
  locator: "models/default"
  load_timeout: 60

aggregation:
  tracked_labels: ["Phone", "Charger"]

scheduler:
  tick_hz: 30

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "camera": {
            "backend": "opencv",
            "device_id": 0,
            "resolution": [400, 400],
            "mirror": True,
            "max_retries": 3,
        },
        "model": {
            "locator": "models/phone-charger",
            "model_file": "model.onnx",
            "metadata_file": "metadata.json",
            "load_timeout": 30,
        },
        "aggregation": {
            "tracked_labels": ["Phone", "Charger"],
            "sum_tolerance": 0.001,
        },
        "scheduler": {
            "tick_hz": 30,
            "classify_timeout": 5,
        },
        "web": {
            "enabled": True,
            "host": "127.0.0.1",
            "port": 8000,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }
