"""
Pydantic model for motion regions found by the motion filter.
"""

from typing import Tuple

from pydantic import BaseModel, Field


class MotionRegion(BaseModel):
    """Detected motion region in frame coordinates."""

    bounding_box: Tuple[int, int, int, int] = Field(
        ...,
        description="Bounding box (x, y, width, height) in frame coordinates"
    )

    area: int = Field(
        ...,
        ge=0,
        description="Contour area in pixels"
    )

    timestamp: float = Field(
        ...,
        description="Timestamp of the frame the region was found in"
    )
