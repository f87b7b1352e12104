"""
Motion filter for the decode pipeline.

This module handles:
- JPEG decoding of incoming frames (OpenCV)
- Background subtraction with OpenCV MOG2
- Motion region extraction with lighting-change rejection
- Filtering a FrameEvent stream down to frames that contain motion

A MotionFilter is bound to one pipeline instance: its background model
learns the scene from that connection's frames only.
"""

import asyncio
import logging
import time
from collections import deque
from typing import AsyncIterator, Callable, List, Optional

import cv2
import numpy as np

from .. import metrics
from ..exceptions import DecodeError
from ..models.camera import MotionSettings
from ..models.frame import FrameEvent
from ..models.motion import MotionRegion

logger = logging.getLogger(__name__)


class MotionDetector:
    """CPU-based motion detection using OpenCV background subtraction."""

    def __init__(self, settings: Optional[MotionSettings] = None):
        """
        Initialize motion detector with MOG2 background subtractor.

        Args:
            settings: History, thresholds and learning rate for MOG2
        """
        self.settings = settings or MotionSettings()
        self.bg_subtractor = self._create_subtractor()

        # Morphological kernel for noise removal
        self.morph_kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (5, 5))

        # Rolling motion ratio, used to warn about misconfigured thresholds
        self._motion_window = deque(maxlen=300)
        self._frame_count = 0
        self._rate_check_interval = 50

        logger.debug(
            f"MotionDetector initialized: history={self.settings.history}, "
            f"varThreshold={self.settings.var_threshold}, "
            f"detectShadows={self.settings.detect_shadows}, "
            f"learning_rate={self.settings.learning_rate}"
        )

    def _create_subtractor(self):
        return cv2.createBackgroundSubtractorMOG2(
            history=self.settings.history,
            varThreshold=self.settings.var_threshold,
            detectShadows=self.settings.detect_shadows
        )

    def detect(self, jpeg: bytes, timestamp: float) -> List[MotionRegion]:
        """
        Decode a JPEG frame and extract its motion regions.

        Raises:
            DecodeError: Bytes are not a decodable JPEG image
        """
        image = cv2.imdecode(np.frombuffer(jpeg, dtype=np.uint8), cv2.IMREAD_COLOR)
        if image is None:
            raise DecodeError(f"Undecodable JPEG frame ({len(jpeg)} bytes)")
        return self.extract_motion_regions(image, timestamp)

    def extract_motion_regions(
        self,
        frame: np.ndarray,
        timestamp: float
    ) -> List[MotionRegion]:
        """
        Extract motion regions from frame using background subtraction.

        Steps:
        1. Convert frame to grayscale
        2. Apply background subtraction
        3. Drop shadow pixels (MOG2 marks them 127)
        4. Morphological opening + dilation to remove noise
        5. Find external contours
        6. Filter by minimum area, reject near-full-frame regions (lighting)

        Args:
            frame: Input frame in BGR format (OpenCV native)
            timestamp: Frame timestamp in seconds

        Returns:
            List of MotionRegion objects
        """
        frame_height, frame_width = frame.shape[:2]

        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        fg_mask = self.bg_subtractor.apply(gray, learningRate=self.settings.learning_rate)
        _, fg_mask = cv2.threshold(fg_mask, 200, 255, cv2.THRESH_BINARY)

        fg_mask = cv2.morphologyEx(fg_mask, cv2.MORPH_OPEN, self.morph_kernel, iterations=1)
        fg_mask = cv2.dilate(fg_mask, self.morph_kernel, iterations=1)

        contours, _ = cv2.findContours(fg_mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        logger.debug(f"Background subtraction: found {len(contours)} raw contours")

        max_region_area = frame_width * frame_height * self.settings.max_region_ratio
        regions = []
        for contour in contours:
            area = cv2.contourArea(contour)
            if area < self.settings.min_contour_area:
                continue
            if area > max_region_area:
                # Whole-scene change: exposure/lighting, not motion
                logger.debug(f"Skipping full-frame motion region: area={area:.0f} pixels")
                continue

            x, y, w, h = cv2.boundingRect(contour)
            if w > 0 and h > 0:
                regions.append(
                    MotionRegion(
                        bounding_box=(x, y, w, h),
                        area=int(area),
                        timestamp=timestamp
                    )
                )

        self._track_rate(bool(regions))
        return regions

    def _track_rate(self, has_motion: bool) -> None:
        self._frame_count += 1
        self._motion_window.append(1 if has_motion else 0)

        if self._frame_count % self._rate_check_interval == 0:
            motion_rate = sum(self._motion_window) / len(self._motion_window)
            # Warn if >50% of frames have motion (possible false positive issue)
            if motion_rate > 0.50:
                logger.warning(
                    f"High motion detection rate: {motion_rate*100:.1f}% of the last "
                    f"{len(self._motion_window)} frames. Check var_threshold/min_contour_area "
                    f"or camera stability."
                )

    def reset(self) -> None:
        """Forget the learned background."""
        self.bg_subtractor = self._create_subtractor()
        self._motion_window.clear()
        self._frame_count = 0


class MotionFilter:
    """Re-emit only frames that contain motion.

    Passing frames get a new timestamp (time of analysis); frames without
    motion are dropped and never reach the topology controller.
    """

    def __init__(
        self,
        settings: Optional[MotionSettings] = None,
        detector: Optional[MotionDetector] = None,
        camera: str = "camera",
        clock: Callable[[], float] = time.time
    ):
        self.detector = detector or MotionDetector(settings)
        self.camera = camera
        self._clock = clock
        self.frames_seen = 0
        self.frames_passed = 0

    async def __call__(self, frames: AsyncIterator[FrameEvent]) -> AsyncIterator[FrameEvent]:
        async for frame in frames:
            self.frames_seen += 1
            # OpenCV work runs off the event loop so decoding keeps draining
            regions = await asyncio.to_thread(self.detector.detect, frame.data, frame.timestamp)
            if not regions:
                metrics.motion_frames_dropped_total.labels(camera=self.camera).inc()
                continue

            self.frames_passed += 1
            logger.debug(f"[{self.camera}] Motion in {len(regions)} region(s)")
            yield FrameEvent(
                timestamp=self._clock(),
                data=frame.data,
                source_name=frame.source_name
            )
