"""Exception classes for the live classifier."""

from __future__ import annotations

from typing import List, Optional


class LiveClassifierError(Exception):
    """Base exception for all live classifier errors."""

    pass


class ModelLoadError(LiveClassifierError):
    """Raised when a model cannot be fetched, parsed, or instantiated."""

    def __init__(self, message: str, locator: Optional[str] = None):
        self.locator = locator
        super().__init__(message)


class CaptureError(LiveClassifierError):
    """Base exception for camera-related errors."""

    def __init__(self, message: str, device_id: Optional[object] = None):
        self.device_id = device_id
        super().__init__(message)


class DeviceUnavailableError(CaptureError):
    """Raised when no camera device is granted (denied, missing, unreadable)."""

    pass


class DeviceBusyError(CaptureError):
    """Raised when another capture session already holds the camera."""

    pass


class InferenceError(LiveClassifierError):
    """Raised when a single classify call fails. Not fatal to a session."""

    pass


class MalformedPredictionSet(LiveClassifierError):
    """
    Describes model output that had to be repaired before aggregation.

    Never raised by the aggregator; instances are handed to the diagnostics
    callback so the anomaly can be reported without interrupting a session.
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or []
        super().__init__(message)
