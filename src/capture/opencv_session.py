"""
OpenCV-based capture session.

Supports:
- USB webcams (device_id as int, e.g., 0)
- RTSP/IP cameras (device_id as str URL)
- Video files (device_id as file path)
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Optional, Union

import cv2
import numpy as np

from errors import DeviceUnavailableError
from .base import CaptureConstraints, CaptureSession
from .rtsp_utils import sanitize_url

logger = logging.getLogger(__name__)


class OpenCVCaptureSession(CaptureSession):
    """
    Capture session backed by cv2.VideoCapture.

    Frames are mirrored/rotated as configured, then center-cropped to the
    requested aspect ratio and resized to the requested resolution, so the
    classifier always sees the same framing the display shows.

    Example:
        session = OpenCVCaptureSession(CaptureConstraints(device_id=0, resolution=(400, 400)))
        await session.open()
        frame_data = session.current_frame()
        await session.close()
    """

    def __init__(self, constraints: CaptureConstraints):
        super().__init__(constraints)
        self._cap: Optional[cv2.VideoCapture] = None

    @property
    def device_id(self) -> Union[int, str]:
        return self._constraints.device_id

    @property
    def is_rtsp(self) -> bool:
        """Check if this is an RTSP stream."""
        return isinstance(self.device_id, str) and (
            self.device_id.startswith("rtsp://") or
            self.device_id.startswith("rtsps://")
        )

    @property
    def is_file(self) -> bool:
        """Check if this is a video file."""
        return (
            isinstance(self.device_id, str) and
            not self.is_rtsp and
            os.path.exists(self.device_id)
        )

    async def _open_device(self) -> None:
        max_retries = max(1, self._constraints.max_retries)
        for attempt in range(max_retries):
            if attempt > 0:
                wait_time = min(2 ** attempt, 10)
                logger.info(
                    f"Retrying camera open (attempt {attempt + 1}/{max_retries}) after {wait_time}s"
                )
                await asyncio.sleep(wait_time)

            cap = await asyncio.to_thread(self._create_capture)
            if cap is not None:
                self._cap = cap
                return
            logger.warning(f"Failed to open device {sanitize_url(self.device_id)}")

        raise DeviceUnavailableError(
            f"Failed to open device {sanitize_url(self.device_id)} after {max_retries} attempts",
            device_id=self.device_id,
        )

    def _create_capture(self) -> Optional[cv2.VideoCapture]:
        cap = cv2.VideoCapture(self.device_id)
        if not cap.isOpened():
            cap.release()
            return None

        # Only USB cameras honour size/fps requests; streams and files report what they have.
        if isinstance(self.device_id, int):
            if self._constraints.resolution:
                w, h = self._constraints.resolution
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
            if self._constraints.fps:
                cap.set(cv2.CAP_PROP_FPS, self._constraints.fps)
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        logger.info(
            f"Camera actual settings - Resolution: "
            f"({cap.get(cv2.CAP_PROP_FRAME_WIDTH)}x{cap.get(cv2.CAP_PROP_FRAME_HEIGHT)}), "
            f"FPS: {cap.get(cv2.CAP_PROP_FPS)}"
        )
        return cap

    def _read_device(self) -> Optional[np.ndarray]:
        if self._cap is None:
            return None
        ret, frame = self._cap.read()
        if not ret or frame is None:
            return None
        return frame

    def _release_device(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def _apply_transforms(self, frame: np.ndarray) -> np.ndarray:
        """Apply configured transforms (rotate, mirror/flip, crop-resize)."""
        c = self._constraints

        if c.rotate == 90:
            frame = cv2.rotate(frame, cv2.ROTATE_90_CLOCKWISE)
        elif c.rotate == 180:
            frame = cv2.rotate(frame, cv2.ROTATE_180)
        elif c.rotate == 270:
            frame = cv2.rotate(frame, cv2.ROTATE_90_COUNTERCLOCKWISE)

        if c.mirror or c.flip_vertical:
            if c.mirror and c.flip_vertical:
                flip_code = -1
            elif c.mirror:
                flip_code = 1
            else:
                flip_code = 0
            frame = cv2.flip(frame, flip_code)

        if c.resolution:
            frame = fit_to_resolution(frame, c.resolution)

        return frame

    def get_video_info(self) -> Dict[str, Any]:
        """Get information about the open device."""
        if self._cap is None or not self._cap.isOpened():
            return {}

        return {
            "width": int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            "height": int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            "fps": self._cap.get(cv2.CAP_PROP_FPS),
            "frame_count": int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT)) if self.is_file else None,
        }


def fit_to_resolution(frame: np.ndarray, resolution) -> np.ndarray:
    """Center-crop frame to the target aspect ratio, then resize to (width, height)."""
    target_w, target_h = int(resolution[0]), int(resolution[1])
    h, w = frame.shape[:2]
    if (w, h) == (target_w, target_h):
        return frame

    target_ratio = target_w / target_h
    if w / h > target_ratio:
        crop_w = int(round(h * target_ratio))
        x0 = (w - crop_w) // 2
        frame = frame[:, x0:x0 + crop_w]
    else:
        crop_h = int(round(w / target_ratio))
        y0 = (h - crop_h) // 2
        frame = frame[y0:y0 + crop_h, :]

    return cv2.resize(frame, (target_w, target_h), interpolation=cv2.INTER_AREA)
