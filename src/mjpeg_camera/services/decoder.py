"""Multipart MJPEG stream decoder.

Splits a multipart/x-mixed-replace HTTP body into individual JPEG images.

Framing:
    --boundary\\r\\n
    Content-Type: image/jpeg\\r\\n
    Content-Length: 12345\\r\\n
    \\r\\n
    <FF D8 ... FF D9>\\r\\n

With a boundary from the response Content-Type, parts are delimited by
their boundary lines. A declared Content-Length is honoured when those
bytes form a whole JPEG; otherwise the part runs to the next boundary line,
so an EOI marker inside the image (an EXIF thumbnail) never ends it early.
Without a boundary the decoder scans for the SOI/EOI markers.

Malformed input raises DecodeError instead of silently discarding bytes:
    - more than MAX_PREAMBLE_BYTES between frames without a JPEG start
    - a JPEG growing past max_frame_bytes without an end marker
    - a part body that is not a complete JPEG
    - stray bytes between one part and the next boundary

Logging Strategy:
    DEBUG - Frame extraction sizes
"""
from __future__ import annotations

import logging
import re
from typing import AsyncIterator, Final

from ..exceptions import DecodeError

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

JPEG_START_MARKER: Final[bytes] = b'\xff\xd8'
"""JPEG SOI (Start of Image) marker."""

JPEG_END_MARKER: Final[bytes] = b'\xff\xd9'
"""JPEG EOI (End of Image) marker."""

DEFAULT_MAX_FRAME_BYTES: Final[int] = 10 * 1024 * 1024
"""Largest accepted JPEG (10MB)."""

MAX_PREAMBLE_BYTES: Final[int] = 64 * 1024
"""Boundary lines and part headers between two images never get this large."""

CONTENT_LENGTH_PATTERN: Final[re.Pattern[bytes]] = re.compile(
    rb'content-length\s*:\s*(\d+)',
    re.IGNORECASE
)

BOUNDARY_PATTERN: Final[re.Pattern[str]] = re.compile(
    r'boundary\s*=\s*"?([^";,\s]+)"?',
    re.IGNORECASE
)

HEADER_TERMINATORS: Final[tuple[bytes, ...]] = (b'\r\n\r\n', b'\n\n')
"""Blank line ending a part's headers (bare LF tolerated)."""

DELIMITER_FOLLOWERS: Final[bytes] = b'\r\n\t -'
"""Bytes that may follow a boundary delimiter on its line."""


# ============================================================================
# Content-Type Helpers
# ============================================================================

def is_mjpeg_content_type(content_type: str | None) -> bool:
    """Return True for content types that carry an MJPEG stream."""
    if not content_type:
        return False
    ct = content_type.lower()
    return (
        "multipart/x-mixed-replace" in ct
        or "multipart/mixed" in ct
        or "motion-jpeg" in ct
        or "mjpeg" in ct
    )


def parse_boundary(content_type: str | None) -> str | None:
    """Extract the multipart boundary token from a Content-Type header.

    Examples:
        >>> parse_boundary('multipart/x-mixed-replace; boundary="--myboundary"')
        '--myboundary'
    """
    if not content_type:
        return None
    match = BOUNDARY_PATTERN.search(content_type)
    return match.group(1) if match else None


def delimiters_for(boundary: str | None) -> tuple[bytes, ...]:
    """Delimiter lines that may separate parts for a boundary.

    The boundary is preceded by "--" on the wire. Cameras that declare a
    boundary already starting with "--" often send it verbatim, so both
    forms are accepted.

    Examples:
        >>> delimiters_for("frame")
        (b'--frame',)
        >>> delimiters_for("--myboundary")
        (b'----myboundary', b'--myboundary')
    """
    if not boundary:
        return ()
    token = boundary.encode("latin-1")
    if token.startswith(b"--"):
        return (b"--" + token, token)
    return (b"--" + token,)


# ============================================================================
# Decoder
# ============================================================================

class MjpegDecoder:
    """Incremental multipart JPEG splitter.

    One instance per connection: the buffer carries partial frames between
    chunks, so a fresh connection needs a fresh decoder.

    Args:
        max_frame_bytes: Largest accepted image
        boundary: Multipart boundary from the response Content-Type; None
            falls back to SOI/EOI scanning
    """

    def __init__(self, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES, boundary: str | None = None) -> None:
        self.max_frame_bytes = max_frame_bytes
        self.boundary = boundary
        self._delimiters = delimiters_for(boundary)
        self._buffer = bytearray()
        self._started = False

    def feed(self, chunk: bytes) -> list[bytes]:
        """Add bytes from the stream and return every image they complete.

        Raises:
            DecodeError: Stream framing is malformed
        """
        self._buffer.extend(chunk)
        if self._delimiters:
            return self._feed_parts()
        return self._feed_markers()

    async def decode(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Yield each JPEG image found in an async stream of byte chunks."""
        async for chunk in chunks:
            for frame in self.feed(chunk):
                yield frame

    # ========================================================================
    # Boundary Framing
    # ========================================================================

    def _feed_parts(self) -> list[bytes]:
        frames: list[bytes] = []

        while True:
            found = self._find_delimiter(0)
            if found is None:
                self._check_preamble(len(self._buffer))
                break
            index, length = found
            if self._started and self._buffer[:index].strip():
                raise DecodeError(f"{index} unexpected bytes before part boundary")
            self._check_preamble(index)

            after = index + length
            if self._buffer.startswith(b"--", after):
                # Close delimiter; whatever follows is epilogue
                del self._buffer[:after + 2]
                self._started = False
                continue

            header_end, terminator = self._find_header_end(after)
            if header_end == -1:
                self._check_preamble(len(self._buffer) - index)
                break
            body_start = header_end + len(terminator)

            declared = self._declared_length(after, header_end)
            if declared is not None:
                end = body_start + declared
                if len(self._buffer) < end:
                    break
                if self._is_jpeg(body_start, end):
                    frames.append(self._take(body_start, end))
                    continue

            following = self._find_delimiter(body_start)
            if following is None:
                self._check_frame_size(len(self._buffer) - body_start)
                break

            end = following[0]
            while end > body_start and self._buffer[end - 1] in b"\r\n":
                end -= 1
            if not self._is_jpeg(body_start, end):
                raise DecodeError(f"Part of {end - body_start} bytes is not a complete JPEG image")
            frames.append(self._take(body_start, end))

        return frames

    def _find_delimiter(self, pos: int) -> tuple[int, int] | None:
        """Earliest delimiter line at or after pos, as (index, length)."""
        best: tuple[int, int] | None = None
        for delimiter in self._delimiters:
            index = self._buffer.find(delimiter, pos)
            while index != -1:
                follow = index + len(delimiter)
                if follow >= len(self._buffer):
                    break
                at_line_start = index == 0 or self._buffer[index - 1] == 0x0A
                if at_line_start and self._buffer[follow] in DELIMITER_FOLLOWERS:
                    if best is None or index < best[0]:
                        best = (index, len(delimiter))
                    break
                index = self._buffer.find(delimiter, index + 1)
        return best

    def _find_header_end(self, pos: int) -> tuple[int, bytes]:
        best, found = -1, b""
        for terminator in HEADER_TERMINATORS:
            index = self._buffer.find(terminator, pos)
            if index != -1 and (best == -1 or index < best):
                best, found = index, terminator
        return best, found

    # ========================================================================
    # Marker Framing
    # ========================================================================

    def _feed_markers(self) -> list[bytes]:
        frames: list[bytes] = []

        while True:
            start = self._buffer.find(JPEG_START_MARKER)
            if start == -1:
                self._check_preamble(len(self._buffer))
                break
            self._check_preamble(start)
            if self._started:
                gap = bytes(self._buffer[:start]).lstrip()
                if gap and not gap.startswith(b"--"):
                    raise DecodeError(f"{start} bytes of image data between frames")

            declared = self._declared_length(0, start)
            if declared is not None:
                if len(self._buffer) < start + declared:
                    break
                if self._is_jpeg(start, start + declared):
                    frames.append(self._take(start, start + declared))
                    continue

            end = self._buffer.find(JPEG_END_MARKER, start + 2)
            if end == -1:
                self._check_frame_size(len(self._buffer) - start)
                break

            frames.append(self._take(start, end + 2))

        return frames

    # ========================================================================
    # Internals
    # ========================================================================

    def _declared_length(self, begin: int, end: int) -> int | None:
        """Content-Length from the part headers in buffer[begin:end], if any."""
        match = CONTENT_LENGTH_PATTERN.search(self._buffer, begin, end)
        if match is None:
            return None
        length = int(match.group(1))
        if length > self.max_frame_bytes:
            raise DecodeError(
                f"Part declares {length} bytes, above the {self.max_frame_bytes} byte limit"
            )
        return length if length >= 4 else None

    def _is_jpeg(self, start: int, end: int) -> bool:
        return (
            end - start >= 4
            and self._buffer.startswith(JPEG_START_MARKER, start, end)
            and self._buffer.endswith(JPEG_END_MARKER, start, end)
        )

    def _take(self, start: int, end: int) -> bytes:
        """Remove one frame and the part headers before it from the buffer."""
        frame = bytes(self._buffer[start:end])
        del self._buffer[:end]
        self._started = True
        logger.debug(f"Frame extracted: {len(frame)} bytes")
        return frame

    def _check_preamble(self, size: int) -> None:
        if size > MAX_PREAMBLE_BYTES:
            raise DecodeError(f"{size} bytes between frames without a JPEG image")

    def _check_frame_size(self, pending: int) -> None:
        if pending > self.max_frame_bytes:
            raise DecodeError(f"No JPEG end marker within {self.max_frame_bytes} bytes")
