"""Networked MJPEG camera: one upstream connection, fanned out to many consumers."""
from .exceptions import (
    AlreadyConnectedError,
    CameraConnectionError,
    CameraError,
    DecodeError,
    NoFrameYetError,
    NotConnectedError,
    RetryExhaustedError,
    ScreenshotCancelledError,
    ScreenshotTimeoutError,
)
from .models.camera import CameraConfig, CameraState, CameraStatus, MotionSettings, RetryPolicy
from .models.frame import FrameEvent
from .services.camera import Camera
from .services.topology import CallbackConsumer, Consumer, QueueConsumer

__version__ = "1.0.0"

__all__ = [
    "AlreadyConnectedError",
    "CallbackConsumer",
    "Camera",
    "CameraConfig",
    "CameraConnectionError",
    "CameraError",
    "CameraState",
    "CameraStatus",
    "Consumer",
    "DecodeError",
    "FrameEvent",
    "MotionSettings",
    "NoFrameYetError",
    "NotConnectedError",
    "QueueConsumer",
    "RetryExhaustedError",
    "RetryPolicy",
    "ScreenshotCancelledError",
    "ScreenshotTimeoutError",
]
