"""Video decode pipeline.

Composes one connection's byte stream into FrameEvents:

    StreamHandle.iter_chunks() -> MjpegDecoder -> FrameEvent -> [MotionFilter]

A pipeline is built per connection (and per transient screenshot) and is
not restartable: a fresh connection gets a fresh decoder and a fresh
motion background model.

Logging Strategy:
    DEBUG - Pipeline construction
    WARN  - Unexpected upstream content type
"""
from __future__ import annotations

import logging
import time
from typing import AsyncIterator, Callable, Protocol

from .. import metrics
from ..models.camera import MotionSettings
from ..models.frame import FrameEvent
from .decoder import DEFAULT_MAX_FRAME_BYTES, MjpegDecoder, is_mjpeg_content_type, parse_boundary
from .motion import MotionFilter

logger = logging.getLogger(__name__)

RawDecoder = Callable[[AsyncIterator[bytes]], AsyncIterator[bytes]]
"""Turns a byte-chunk stream into a stream of raw JPEG buffers."""

FrameFilter = Callable[[AsyncIterator[FrameEvent]], AsyncIterator[FrameEvent]]
"""Re-emits a subset of a FrameEvent stream."""


class ByteSource(Protocol):
    """What the pipeline needs from a connection handle."""

    @property
    def content_type(self) -> str: ...

    def iter_chunks(self) -> AsyncIterator[bytes]: ...


class VideoPipeline:
    """Factory for per-connection decode pipelines.

    Args:
        camera: Camera name (metrics label, log prefix)
        max_frame_bytes: Decoder limit before a stream counts as malformed
        motion_settings: Settings for the default motion filter
        decoder_factory: Builds a RawDecoder per pipeline from the response
            Content-Type (default MjpegDecoder with its boundary)
        motion_filter_factory: Builds a FrameFilter per pipeline (default MotionFilter)
        clock: Timestamp source for decoded frames
    """

    def __init__(
        self,
        *,
        camera: str = "camera",
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        motion_settings: MotionSettings | None = None,
        decoder_factory: Callable[[str], RawDecoder] | None = None,
        motion_filter_factory: Callable[[], FrameFilter] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.camera = camera
        self._decoder_factory = decoder_factory or (
            lambda content_type: MjpegDecoder(max_frame_bytes, parse_boundary(content_type)).decode
        )
        self._motion_filter_factory = motion_filter_factory or (
            lambda: MotionFilter(motion_settings, camera=camera)
        )
        self._clock = clock

    def build(self, handle: ByteSource, motion_enabled: bool = False) -> AsyncIterator[FrameEvent]:
        """Compose handle -> decoder -> FrameEvent -> optional motion filter.

        Returns:
            Lazy async iterator of FrameEvents, bounded by the connection
        """
        if not is_mjpeg_content_type(handle.content_type):
            logger.warning(
                f"[{self.camera}] Unexpected content type '{handle.content_type}', "
                "decoding as MJPEG anyway"
            )

        decode = self._decoder_factory(handle.content_type)
        frames = self._to_events(decode(handle.iter_chunks()))
        if motion_enabled:
            frames = self._motion_filter_factory()(frames)

        logger.debug(f"[{self.camera}] Pipeline built (motion={motion_enabled})")
        return frames

    async def _to_events(self, images: AsyncIterator[bytes]) -> AsyncIterator[FrameEvent]:
        """Promote raw JPEG buffers to FrameEvents stamped with decode time."""
        decoded = metrics.frames_decoded_total.labels(camera=self.camera)
        async for data in images:
            decoded.inc()
            yield FrameEvent(timestamp=self._clock(), data=data)
