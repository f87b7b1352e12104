"""Frame event model.

FrameEvent is the unit that flows from the decode pipeline through the
topology controller to every attached consumer. It is immutable: stamping
the camera name produces a new instance that shares the same image bytes.
"""
from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field


class FrameEvent(BaseModel):
    """One decoded image plus its capture time and source camera."""

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(
        default_factory=time.time,
        description="Capture time (epoch seconds)"
    )

    data: bytes = Field(
        repr=False,
        description="One encoded JPEG image"
    )

    source_name: str | None = Field(
        default=None,
        description="Name of the camera that produced the frame"
    )

    @property
    def size(self) -> int:
        """Image size in bytes."""
        return len(self.data)

    def stamped(self, source_name: str) -> FrameEvent:
        """Return this frame carrying source_name, keeping an existing stamp."""
        if self.source_name:
            return self
        return self.model_copy(update={"source_name": source_name})
