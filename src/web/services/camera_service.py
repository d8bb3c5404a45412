from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

import cv2
import numpy as np

from models.frame import FrameData

logger = logging.getLogger(__name__)

FrameProvider = Callable[[], Optional[FrameData]]


class CameraService:
    """
    JPEG views of the running session's capture.

    Never opens the camera itself: it reads the snapshot the capture session
    already holds, so the web UI and the scheduler share a single device.
    """

    @staticmethod
    def encode_jpeg(frame: np.ndarray, quality: int = 80) -> bytes:
        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
        if not ok:
            raise RuntimeError("Failed to encode JPEG")
        return buf.tobytes()

    @staticmethod
    def snapshot_jpeg(get_frame: FrameProvider, quality: int = 80) -> Optional[bytes]:
        """JPEG of the current frame, or None if no frame is available."""
        frame_data = get_frame()
        if frame_data is None:
            return None
        return CameraService.encode_jpeg(frame_data.frame, quality)

    @staticmethod
    async def mjpeg_stream(
        get_frame: FrameProvider,
        fps: int = 10,
        is_active: Callable[[], bool] = lambda: True,
    ) -> AsyncIterator[bytes]:
        """
        Yield MJPEG multipart chunks until is_active() turns False.

        A frame is only re-encoded when the capture has produced a new one.
        """
        fps = max(1, min(30, int(fps)))
        delay = 1.0 / fps
        last_index = None

        while is_active():
            frame_data = get_frame()
            if frame_data is None or frame_data.frame_index == last_index:
                await asyncio.sleep(delay)
                continue
            last_index = frame_data.frame_index
            try:
                jpg = CameraService.encode_jpeg(frame_data.frame)
            except RuntimeError as e:
                logger.warning(f"MJPEG encode failed: {e}")
                await asyncio.sleep(delay)
                continue
            yield b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + jpg + b"\r\n"
            await asyncio.sleep(delay)
