"""Camera configuration and status models.

Defines Pydantic v2 models for a single MJPEG camera:
- RetryPolicy: Capped exponential backoff for reconnects
- MotionSettings: Background-subtraction tuning for the motion filter
- CameraConfig: Construction surface (url, credentials, motion, timeouts)
- CameraState: IDLE / DRAINING / STREAMING
- CameraStatus: Snapshot of camera state for the API and health checks

Field Validation:
- URL must start with http:// or https://
- Name length: 1-50 characters
- max_delay must not be below initial_delay
"""
from __future__ import annotations

import random
from enum import Enum

from pydantic import BaseModel, Field, model_validator

# ============================================================================
# Validation Helpers
# ============================================================================

def validate_camera_url(url: str) -> None:
    """Validate camera URL protocol prefix.

    Args:
        url: Camera stream URL to validate

    Raises:
        ValueError: If URL doesn't start with http:// or https://
    """
    if not url.lower().startswith(("http://", "https://")):
        raise ValueError("Camera URL must start with http:// or https://")


def default_camera_name() -> str:
    """Generate a camera name like 'camera417'."""
    return f"camera{random.randint(0, 1000)}"


# ============================================================================
# Retry Policy
# ============================================================================

class RetryPolicy(BaseModel):
    """Reconnect policy: capped exponential backoff with jitter.

    max_attempts=None retries forever (always-on camera). Attempts are
    counted from the last frame received, not from start().
    """

    initial_delay: float = Field(
        default=0.5,
        ge=0.0,
        description="Delay before the first reconnect attempt (seconds)"
    )

    max_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound for any single delay (seconds)"
    )

    multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Growth factor between consecutive delays"
    )

    jitter: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Random +/- fraction applied to each delay"
    )

    max_attempts: int | None = Field(
        default=None,
        ge=1,
        description="Consecutive failed attempts before giving up (None = forever)"
    )

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> RetryPolicy:
        """Validate max_delay >= initial_delay."""
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self

    def delay_for(self, attempt: int) -> float:
        """Delay before the given 1-based reconnect attempt, never above max_delay."""
        base = self.initial_delay * (self.multiplier ** max(attempt - 1, 0))
        if self.jitter:
            base *= 1.0 + random.uniform(-self.jitter, self.jitter)
        return min(max(base, 0.0), self.max_delay)

    def exhausted(self, attempt: int) -> bool:
        """True when attempt is past the configured bound."""
        return self.max_attempts is not None and attempt > self.max_attempts


# ============================================================================
# Motion Settings
# ============================================================================

class MotionSettings(BaseModel):
    """Tuning for the MOG2 motion filter."""

    history: int = Field(default=500, ge=1, description="Background model history (frames)")
    var_threshold: int = Field(default=16, ge=1, description="MOG2 variance threshold")
    detect_shadows: bool = Field(default=True, description="Mark shadows and ignore them")
    learning_rate: float = Field(default=0.005, description="Background learning rate (-1 = auto)")
    min_contour_area: int = Field(default=500, ge=0, description="Smallest motion region (pixels)")
    max_region_ratio: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Regions larger than this share of the frame count as lighting changes"
    )


# ============================================================================
# Camera Configuration
# ============================================================================

class CameraConfig(BaseModel):
    """Everything needed to construct a Camera."""

    name: str = Field(
        default_factory=default_camera_name,
        min_length=1,
        max_length=50,
        description="Camera name stamped onto every frame",
        examples=["front-door", "garage"]
    )

    url: str = Field(
        min_length=8,
        description="URL serving a multipart MJPEG stream",
        examples=["http://192.168.1.20/videostream.cgi"]
    )

    user: str | None = Field(default=None, description="Username for basic/digest auth")

    password: str | None = Field(default=None, repr=False, description="Password for basic/digest auth")

    motion: bool = Field(default=False, description="Only publish frames containing motion")

    motion_settings: MotionSettings = Field(default_factory=MotionSettings)

    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    connect_timeout: float = Field(default=10.0, gt=0.0, description="TCP/TLS connect timeout (seconds)")

    read_timeout: float | None = Field(
        default=30.0,
        gt=0.0,
        description="Max silence on an open stream before it counts as dropped"
    )

    screenshot_timeout: float | None = Field(
        default=10.0,
        gt=0.0,
        description="Max wait for a transient screenshot frame (seconds)"
    )

    chunk_size: int = Field(default=8192, ge=256, description="Largest chunk handed to the decoder (bytes)")

    max_frame_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Largest accepted JPEG before the stream is declared malformed"
    )

    autostart: bool = Field(default=False, description="Start streaming when the service boots")

    @model_validator(mode="after")
    def validate_url_format(self) -> CameraConfig:
        """Validate camera URL protocol."""
        validate_camera_url(self.url)
        return self


# ============================================================================
# Camera State
# ============================================================================

class CameraState(str, Enum):
    """Pipe topology states."""
    IDLE = "idle"              # No session, no connection
    DRAINING = "draining"      # Session active, discard sink absorbing frames
    STREAMING = "streaming"    # Session active, >=1 real consumer attached


class CameraStatus(BaseModel):
    """Point-in-time view of a camera for API responses."""

    name: str
    url: str = Field(description="Camera URL with credentials masked")
    state: CameraState
    motion: bool
    connected: bool = Field(description="An upstream connection is open")
    consumers: int = Field(ge=0, description="Attached real consumers")
    using_discard_sink: bool
    frames_received: int = Field(ge=0)
    frames_discarded: int = Field(ge=0)
    last_frame_at: float | None = None
    reconnect_attempts: int = Field(ge=0)
    last_error: str | None = None
