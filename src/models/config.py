"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class CameraConfig:
    """Camera configuration."""
    backend: str = "opencv"
    device_id: Union[int, str] = 0
    resolution: List[int] = field(default_factory=lambda: [400, 400])
    fps: Optional[int] = None
    mirror: bool = True
    flip_vertical: bool = False
    rotate: int = 0
    max_retries: int = 3
    open_timeout: Optional[float] = None
    refresh_interval: float = 0.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CameraConfig":
        """Adapter: Create from config dictionary."""
        return cls(
            backend=d.get("backend", "opencv"),
            device_id=d.get("device_id", 0),
            resolution=d.get("resolution", [400, 400]),
            fps=d.get("fps"),
            mirror=d.get("mirror", True),
            flip_vertical=d.get("flip_vertical", False),
            rotate=d.get("rotate", 0) or 0,
            max_retries=d.get("max_retries", 3),
            open_timeout=d.get("open_timeout"),
            refresh_interval=d.get("refresh_interval", 0.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "device_id": self.device_id,
            "resolution": self.resolution,
            "fps": self.fps,
            "mirror": self.mirror,
            "flip_vertical": self.flip_vertical,
            "rotate": self.rotate,
            "max_retries": self.max_retries,
            "open_timeout": self.open_timeout,
            "refresh_interval": self.refresh_interval,
        }


@dataclass
class ModelConfig:
    """Classifier model configuration."""
    locator: str = ""
    model_file: str = "model.onnx"
    metadata_file: str = "metadata.json"
    cache_dir: str = "data/models"
    apply_softmax: bool = False
    channels_last: bool = False
    load_timeout: Optional[float] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelConfig":
        return cls(
            locator=d.get("locator", ""),
            model_file=d.get("model_file", "model.onnx"),
            metadata_file=d.get("metadata_file", "metadata.json"),
            cache_dir=d.get("cache_dir", "data/models"),
            apply_softmax=d.get("apply_softmax", False),
            channels_last=d.get("channels_last", False),
            load_timeout=d.get("load_timeout"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locator": self.locator,
            "model_file": self.model_file,
            "metadata_file": self.metadata_file,
            "cache_dir": self.cache_dir,
            "apply_softmax": self.apply_softmax,
            "channels_last": self.channels_last,
            "load_timeout": self.load_timeout,
        }


@dataclass
class AggregationConfig:
    """Which labels get a percentage, and how strict the sum check is."""
    tracked_labels: List[str] = field(default_factory=lambda: ["Phone", "Charger"])
    sum_tolerance: float = 1e-3

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AggregationConfig":
        return cls(
            tracked_labels=list(d.get("tracked_labels", ["Phone", "Charger"])),
            sum_tolerance=d.get("sum_tolerance", 1e-3),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tracked_labels": list(self.tracked_labels),
            "sum_tolerance": self.sum_tolerance,
        }


@dataclass
class SchedulerConfig:
    """
    Inference scheduler configuration.

    Attributes:
        tick_hz: Cadence of the tick loop (boundaries per second).
        classify_timeout: Seconds before a classify call fails. None = no limit.
        stats_log_interval: Seconds between status log messages.
    """
    tick_hz: float = 30.0
    classify_timeout: Optional[float] = None
    stats_log_interval: float = 60.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SchedulerConfig":
        return cls(
            tick_hz=d.get("tick_hz", 30.0),
            classify_timeout=d.get("classify_timeout"),
            stats_log_interval=d.get("stats_log_interval", 60.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tick_hz": self.tick_hz,
            "classify_timeout": self.classify_timeout,
            "stats_log_interval": self.stats_log_interval,
        }

    @property
    def tick_interval(self) -> float:
        return 1.0 / self.tick_hz


@dataclass
class WebConfig:
    """HTTP server configuration."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WebConfig":
        return cls(
            enabled=d.get("enabled", True),
            host=d.get("host", "127.0.0.1"),
            port=d.get("port", 8000),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "host": self.host, "port": self.port}


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    camera: CameraConfig = field(default_factory=CameraConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    web: WebConfig = field(default_factory=WebConfig)
    log_path: str = "logs/live_classifier.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            camera=CameraConfig.from_dict(d.get("camera", {}) or {}),
            model=ModelConfig.from_dict(d.get("model", {}) or {}),
            aggregation=AggregationConfig.from_dict(d.get("aggregation", {}) or {}),
            scheduler=SchedulerConfig.from_dict(d.get("scheduler", {}) or {}),
            web=WebConfig.from_dict(d.get("web", {}) or {}),
            log_path=d.get("log_path", "logs/live_classifier.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or passing to existing code)."""
        return {
            "camera": self.camera.to_dict(),
            "model": self.model.to_dict(),
            "aggregation": self.aggregation.to_dict(),
            "scheduler": self.scheduler.to_dict(),
            "web": self.web.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
