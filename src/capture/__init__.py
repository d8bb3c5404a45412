"""
Capture layer: exclusive camera sessions with a continuously refreshed
current-frame buffer.

Each backend implements the CaptureSession interface; the session
controller only ever sees open(), current_frame() and close().
"""

from typing import Any, Dict

from .base import CaptureSession, CaptureConstraints
from .opencv_session import OpenCVCaptureSession


def create_session_from_config(camera_cfg: Dict[str, Any], source_id: str = "webcam") -> CaptureSession:
    """
    Factory: build an unopened capture session for the configured backend.

    Raises:
        ValueError: If the backend is unknown.
    """
    backend = camera_cfg.get("backend", "opencv")
    constraints = CaptureConstraints.from_camera_config(camera_cfg, source_id=source_id)
    if backend == "opencv":
        return OpenCVCaptureSession(constraints)
    raise ValueError(f"Unknown camera backend: {backend}")


__all__ = [
    "CaptureSession",
    "CaptureConstraints",
    "OpenCVCaptureSession",
    "create_session_from_config",
]
