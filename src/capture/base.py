"""
CaptureSession interface for exclusive, continuously refreshed camera access.

A capture session owns one camera device handle. Once opened, a background
task keeps replacing the "current frame" snapshot at the device's native
rate; consumers read that snapshot without blocking and without queuing.

Lifecycle:
    1. Create instance with CaptureConstraints
    2. await open() to acquire the device and start refreshing
    3. Call current_frame() as often as needed (None until the first frame)
    4. await close() to stop refreshing and release the device

Only one session may be open per process at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

import numpy as np

from errors import DeviceBusyError, DeviceUnavailableError
from models.frame import FrameData

logger = logging.getLogger(__name__)


@dataclass
class CaptureConstraints:
    """
    What the caller wants from the camera.

    Attributes:
        source_id: Identifier for this source (e.g., "webcam").
        device_id: Camera index (int), stream URL (str), or file path (str).
        resolution: Output size as (width, height). None = device default.
        fps: Requested device frame rate. None = device default.
        mirror: Flip frames horizontally (selfie view).
        flip_vertical: Flip frames vertically.
        rotate: Rotation in degrees (0, 90, 180, 270).
        max_retries: Attempts to open the device before giving up.
        refresh_interval: Seconds between buffer refreshes. 0 = as fast as the device delivers.
        max_consecutive_failures: Read failures before the session logs itself as stalled.
        metadata: Additional backend-specific configuration.
    """
    source_id: str = "webcam"
    device_id: Union[int, str] = 0
    resolution: Optional[Tuple[int, int]] = (400, 400)
    fps: Optional[int] = None
    mirror: bool = True
    flip_vertical: bool = False
    rotate: int = 0
    max_retries: int = 3
    refresh_interval: float = 0.0
    max_consecutive_failures: int = 10
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_camera_config(cls, camera_cfg: Dict[str, Any], source_id: str = "webcam") -> "CaptureConstraints":
        """
        Adapter: Create CaptureConstraints from the camera config dict.

        Args:
            camera_cfg: Camera configuration dict (from config.yaml).
            source_id: Identifier for this source.
        """
        resolution = camera_cfg.get("resolution")
        if resolution:
            resolution = tuple(resolution)

        return cls(
            source_id=source_id,
            device_id=camera_cfg.get("device_id", 0),
            resolution=resolution,
            fps=camera_cfg.get("fps"),
            mirror=camera_cfg.get("mirror", True),
            flip_vertical=camera_cfg.get("flip_vertical", False),
            rotate=camera_cfg.get("rotate", 0) or 0,
            max_retries=camera_cfg.get("max_retries", 3),
            refresh_interval=camera_cfg.get("refresh_interval", 0.0) or 0.0,
        )


class CaptureSession(ABC):
    """
    Abstract base class for capture sessions.

    Subclasses implement the three device primitives (_open_device,
    _read_device, _release_device); this class handles exclusivity, the
    refresh task, and idempotent close.

    _read_device() and _release_device() are blocking and are run in a
    worker thread. _read_device() is never called concurrently with itself
    or with _release_device().
    """

    _active: ClassVar[Optional["CaptureSession"]] = None

    def __init__(self, constraints: CaptureConstraints):
        self._constraints = constraints
        self._latest: Optional[FrameData] = None
        self._frame_index = 0
        self._is_open = False
        self._device_acquired = False
        self._closing = False
        self._consecutive_failures = 0
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def source_id(self) -> str:
        """Unique identifier for this source."""
        return self._constraints.source_id

    @property
    def constraints(self) -> CaptureConstraints:
        return self._constraints

    @property
    def is_open(self) -> bool:
        """Whether the session holds the device and is refreshing frames."""
        return self._is_open

    @property
    def frame_index(self) -> int:
        """Number of frames captured since open."""
        return self._frame_index

    @classmethod
    def active_session(cls) -> Optional["CaptureSession"]:
        """The session currently holding the camera, if any."""
        return CaptureSession._active

    async def open(self) -> None:
        """
        Acquire the camera and start refreshing the frame buffer.

        Raises:
            DeviceBusyError: Another session already holds the camera.
            DeviceUnavailableError: The device could not be opened.
        """
        if self._is_open:
            return

        holder = CaptureSession._active
        if holder is not None and holder is not self:
            raise DeviceBusyError(
                f"Camera is held by session '{holder.source_id}'",
                device_id=self._constraints.device_id,
            )

        # Claim before the first await so a concurrent open() sees the device as taken.
        CaptureSession._active = self
        self._closing = False
        try:
            await self._open_device()
            self._device_acquired = True
        except (DeviceUnavailableError, asyncio.CancelledError):
            await self._abandon()
            raise
        except Exception as e:
            await self._abandon()
            raise DeviceUnavailableError(
                f"Failed to open camera {self._constraints.device_id!r}: {e}",
                device_id=self._constraints.device_id,
            ) from e

        self._latest = None
        self._frame_index = 0
        self._consecutive_failures = 0
        self._is_open = True
        self._refresh_task = asyncio.create_task(
            self._refresh_loop(), name=f"capture-refresh-{self.source_id}"
        )
        logger.info(
            f"Capture session opened: source_id={self.source_id}, "
            f"device={self._constraints.device_id!r}, resolution={self._constraints.resolution}"
        )

    def current_frame(self) -> Optional[FrameData]:
        """Latest frame snapshot, or None before the first frame arrives."""
        return self._latest

    async def close(self) -> None:
        """
        Stop refreshing and release the device.

        Safe to call multiple times, and safe to call after a failed open().
        """
        if self._closing:
            return
        self._closing = True
        self._is_open = False

        task, self._refresh_task = self._refresh_task, None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Capture refresh task ended with error: {e}")

        await self._abandon()
        self._latest = None
        logger.info(f"Capture session closed: source_id={self.source_id}")

    async def _abandon(self) -> None:
        """Release the device if held and give up the exclusivity claim."""
        try:
            if self._device_acquired:
                self._device_acquired = False
                await asyncio.to_thread(self._release_device)
        except Exception as e:
            logger.warning(f"Error releasing camera {self._constraints.device_id!r}: {e}")
        finally:
            if CaptureSession._active is self:
                CaptureSession._active = None

    async def _refresh_loop(self) -> None:
        interval = self._constraints.refresh_interval
        while self._is_open:
            try:
                raw = await asyncio.to_thread(self._read_device)
                if raw is not None:
                    raw = self._apply_transforms(raw)
            except Exception as e:
                logger.warning(f"Camera read raised: {e}")
                raw = None

            if not self._is_open:
                break

            if raw is None:
                self._consecutive_failures += 1
                if self._consecutive_failures == self._constraints.max_consecutive_failures:
                    logger.error(
                        f"Too many consecutive read failures ({self._consecutive_failures}) "
                        f"on {self.source_id}; keeping last frame"
                    )
                elif self._consecutive_failures < self._constraints.max_consecutive_failures:
                    logger.warning(f"Failed to read frame (failures: {self._consecutive_failures})")
                await asyncio.sleep(max(interval, 0.05))
                continue

            self._consecutive_failures = 0
            self._frame_index += 1
            self._latest = FrameData.from_numpy(
                raw,
                timestamp=time.time(),
                frame_index=self._frame_index,
                source=self.source_id,
            )
            # Yield even when the device read returned immediately.
            await asyncio.sleep(interval)

    def _apply_transforms(self, frame: np.ndarray) -> np.ndarray:
        """Hook for subclasses to post-process raw device frames."""
        return frame

    @abstractmethod
    async def _open_device(self) -> None:
        """
        Acquire the underlying device.

        Raises:
            DeviceUnavailableError: If the device cannot be opened.
        """
        pass

    @abstractmethod
    def _read_device(self) -> Optional[np.ndarray]:
        """Blocking read of one frame; None on failure."""
        pass

    @abstractmethod
    def _release_device(self) -> None:
        """Blocking release of the underlying device."""
        pass

    async def __aenter__(self) -> "CaptureSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
