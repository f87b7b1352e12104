"""
Unit tests for the motion detector and motion filter.
"""

import cv2
import numpy as np
import pytest

from mjpeg_camera.exceptions import DecodeError
from mjpeg_camera.models.camera import MotionSettings
from mjpeg_camera.models.frame import FrameEvent
from mjpeg_camera.models.motion import MotionRegion
from mjpeg_camera.services.motion import MotionDetector, MotionFilter


def encode(image: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode(".jpg", image)
    assert ok
    return buffer.tobytes()


def black_frame(width=320, height=240) -> np.ndarray:
    return np.zeros((height, width, 3), dtype=np.uint8)


class StubDetector:
    """Reports motion for frames whose payload is listed in moving."""

    def __init__(self, moving):
        self.moving = set(moving)

    def detect(self, jpeg, timestamp):
        if jpeg in self.moving:
            return [MotionRegion(bounding_box=(0, 0, 10, 10), area=100, timestamp=timestamp)]
        return []


class TestMotionDetector:
    """Tests for MOG2-based region extraction."""

    def test_static_scene_has_no_motion(self):
        """Should report nothing once the background is learned."""
        detector = MotionDetector(MotionSettings(learning_rate=-1))
        regions = []
        for i in range(20):
            regions = detector.detect(encode(black_frame()), float(i))

        assert regions == []

    def test_detects_new_object(self):
        """Should find a bright square appearing on a dark background."""
        detector = MotionDetector(MotionSettings(learning_rate=-1))
        for i in range(20):
            detector.detect(encode(black_frame()), float(i))

        frame = black_frame()
        cv2.rectangle(frame, (100, 80), (180, 160), (255, 255, 255), thickness=-1)
        regions = detector.detect(encode(frame), 20.0)

        assert len(regions) >= 1
        assert regions[0].area >= 500
        assert regions[0].timestamp == 20.0

    def test_rejects_undecodable_bytes(self):
        """Should raise DecodeError for bytes that are not a JPEG."""
        detector = MotionDetector()

        with pytest.raises(DecodeError):
            detector.detect(b"\xff\xd8definitely not a jpeg\xff\xd9", 0.0)

    def test_reset_forgets_background(self):
        """Should start learning again after reset()."""
        detector = MotionDetector()
        detector.detect(encode(black_frame()), 0.0)

        detector.reset()

        assert detector._frame_count == 0


class TestMotionFilter:
    """Tests for the FrameEvent motion filter."""

    @pytest.mark.asyncio
    async def test_passes_only_moving_frames(self):
        """Should drop frames without motion and re-stamp the rest."""
        frames = [FrameEvent(timestamp=float(i), data=bytes([i]) * 8, source_name="cam") for i in range(4)]
        detector = StubDetector(moving={frames[1].data, frames[3].data})
        motion_filter = MotionFilter(detector=detector, camera="cam", clock=lambda: 999.0)

        async def source():
            for frame in frames:
                yield frame

        passed = [frame async for frame in motion_filter(source())]

        assert [frame.data for frame in passed] == [frames[1].data, frames[3].data]
        assert all(frame.timestamp == 999.0 for frame in passed)
        assert all(frame.source_name == "cam" for frame in passed)
        assert motion_filter.frames_seen == 4
        assert motion_filter.frames_passed == 2
