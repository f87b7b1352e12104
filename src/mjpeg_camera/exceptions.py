"""Camera error taxonomy.

Every error raised by the camera core derives from CameraError so that the
HTTP layer (and any other owner) can map failures with a single handler.

Error Categories:
    - Transport: CameraConnectionError, RetryExhaustedError
    - Data: DecodeError
    - State: NotConnectedError, AlreadyConnectedError, NoFrameYetError
    - Screenshot: ScreenshotTimeoutError, ScreenshotCancelledError
"""
from __future__ import annotations


class CameraError(Exception):
    """Base error for camera operations."""


class CameraConnectionError(CameraError, ConnectionError):
    """Transport-level failure talking to the camera."""


class RetryExhaustedError(CameraConnectionError):
    """Reconnect attempts used up by the retry policy."""


class DecodeError(CameraError):
    """Upstream bytes are not a well-formed multipart JPEG stream."""


class NotConnectedError(CameraError):
    """Operation needs an open connection but there is none."""


class AlreadyConnectedError(CameraError):
    """Operation would open a second connection or session."""


class NoFrameYetError(CameraError):
    """A frame was requested before the first one arrived."""


class ScreenshotTimeoutError(CameraError, TimeoutError):
    """Transient screenshot did not receive a frame in time."""


class ScreenshotCancelledError(CameraError):
    """Transient screenshot was cancelled because the camera was stopped."""
