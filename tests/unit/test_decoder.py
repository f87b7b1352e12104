"""
Unit tests for the multipart MJPEG decoder.

Tests frame splitting with and without Content-Length, chunk boundaries,
malformed-stream detection and content-type helpers.
"""

import pytest

from mjpeg_camera.exceptions import DecodeError
from mjpeg_camera.services.decoder import (
    MAX_PREAMBLE_BYTES,
    MjpegDecoder,
    delimiters_for,
    is_mjpeg_content_type,
    parse_boundary,
)

from conftest import build_jpeg, build_part


def exif_jpeg(index: int) -> bytes:
    """JPEG whose APP1 segment embeds a complete thumbnail (SOI ... EOI)."""
    thumbnail = b"\xff\xd8thumb\xff\xd9"
    return b"\xff\xd8\xff\xe1EXIF" + thumbnail + f"main-image-{index}".encode() + b"\xff\xd9"


class TestFeed:
    """Tests for MjpegDecoder.feed()."""

    def test_splits_parts_with_content_length(self):
        """Should return every complete image in one chunk."""
        decoder = MjpegDecoder()
        body = build_part(build_jpeg(1)) + build_part(build_jpeg(2))

        frames = decoder.feed(body)

        assert frames == [build_jpeg(1), build_jpeg(2)]

    def test_splits_parts_without_content_length(self):
        """Should fall back to SOI/EOI scanning."""
        decoder = MjpegDecoder()
        body = build_part(build_jpeg(1), content_length=False) + build_part(build_jpeg(2), content_length=False)

        assert decoder.feed(body) == [build_jpeg(1), build_jpeg(2)]

    def test_reassembles_frame_split_across_chunks(self):
        """Should keep partial frames buffered until the rest arrives."""
        decoder = MjpegDecoder()
        body = build_part(build_jpeg(7))

        frames = []
        for i in range(len(body)):
            frames.extend(decoder.feed(body[i:i + 1]))

        assert frames == [build_jpeg(7)]

    def test_uses_declared_length_when_payload_contains_eoi(self):
        """Should not cut a frame at an embedded FF D9 when Content-Length covers it."""
        decoder = MjpegDecoder()
        image = b"\xff\xd8" + b"thumb\xff\xd9more" + b"\xff\xd9"

        assert decoder.feed(build_part(image)) == [image]

    def test_wrong_content_length_falls_back_to_markers(self):
        """Should use EOI scanning when the declared bytes do not end in EOI."""
        decoder = MjpegDecoder()
        image = build_jpeg(3)
        body = (
            b"--frame\r\nContent-Length: " + str(len(image) - 3).encode() + b"\r\n\r\n"
            + image + b"\r\n"
        )

        assert decoder.feed(body) == [image]

    def test_waits_for_incomplete_frame(self):
        """Should return nothing until the end marker arrives."""
        decoder = MjpegDecoder()
        part = build_part(build_jpeg(1))

        assert decoder.feed(part[:-6]) == []
        assert decoder.feed(part[-6:]) == [build_jpeg(1)]


class TestBoundaryFraming:
    """Tests for part splitting on the Content-Type boundary."""

    def test_embedded_thumbnail_without_content_length(self):
        """Should keep the whole image when an EOI marker appears inside it."""
        decoder = MjpegDecoder(boundary="frame")
        images = [exif_jpeg(1), exif_jpeg(2)]
        body = b"".join(build_part(image, content_length=False) for image in images)

        first = decoder.feed(body)
        second = decoder.feed(b"--frame\r\n")

        assert first + second == images

    def test_content_length_part_is_emitted_immediately(self):
        """Should not wait for the next boundary when the length checks out."""
        decoder = MjpegDecoder(boundary="frame")

        assert decoder.feed(build_part(exif_jpeg(1))) == [exif_jpeg(1)]

    def test_close_delimiter_ends_last_part(self):
        """Should emit the final part at the closing boundary."""
        decoder = MjpegDecoder(boundary="frame")

        frames = decoder.feed(build_part(build_jpeg(1), content_length=False) + b"--frame--\r\n")

        assert frames == [build_jpeg(1)]

    def test_accepts_boundary_sent_verbatim(self):
        """Should split on a declared '--myboundary' sent without extra dashes."""
        decoder = MjpegDecoder(boundary="--myboundary")
        part = b"--myboundary\r\nContent-Type: image/jpeg\r\n\r\n" + build_jpeg(1) + b"\r\n"

        assert decoder.feed(part + b"--myboundary\r\n") == [build_jpeg(1)]

    def test_split_across_chunks(self):
        """Should reassemble headers and body fed one byte at a time."""
        decoder = MjpegDecoder(boundary="frame")
        body = build_part(exif_jpeg(3), content_length=False) + b"--frame\r\n"

        frames = []
        for i in range(len(body)):
            frames.extend(decoder.feed(body[i:i + 1]))

        assert frames == [exif_jpeg(3)]

    def test_rejects_part_that_is_not_a_jpeg(self):
        """Should raise instead of emitting a corrupted frame."""
        decoder = MjpegDecoder(boundary="frame")
        part = b"--frame\r\nContent-Type: image/jpeg\r\n\r\nnot an image\r\n"

        with pytest.raises(DecodeError):
            decoder.feed(part + b"--frame\r\n")

    def test_rejects_stray_bytes_after_a_part(self):
        """Should raise when bytes follow a Content-Length part before the boundary."""
        decoder = MjpegDecoder(boundary="frame")
        body = build_part(build_jpeg(1))[:-2] + b"leftover\r\n" + build_part(build_jpeg(2))

        with pytest.raises(DecodeError):
            decoder.feed(body)

    def test_delimiters_for(self):
        """Should accept both wire forms of a dash-prefixed boundary."""
        assert delimiters_for("frame") == (b"--frame",)
        assert delimiters_for("--myboundary") == (b"----myboundary", b"--myboundary")
        assert delimiters_for(None) == ()



class TestMalformedStreams:
    """Tests for DecodeError on malformed input."""

    def test_raises_on_oversized_preamble(self):
        """Should reject a stream that never starts an image."""
        decoder = MjpegDecoder()

        with pytest.raises(DecodeError):
            decoder.feed(b"x" * (MAX_PREAMBLE_BYTES + 1))

    def test_raises_when_frame_exceeds_limit(self):
        """Should reject an image that grows past max_frame_bytes without EOI."""
        decoder = MjpegDecoder(max_frame_bytes=1024)

        with pytest.raises(DecodeError):
            decoder.feed(b"\xff\xd8" + b"a" * 2048)

    def test_raises_when_declared_length_exceeds_limit(self):
        """Should reject a part header announcing an oversized image."""
        decoder = MjpegDecoder(max_frame_bytes=1024)

        with pytest.raises(DecodeError):
            decoder.feed(b"--frame\r\nContent-Length: 999999\r\n\r\n\xff\xd8")

    def test_marker_scan_refuses_to_drop_image_bytes(self):
        """Should raise rather than skip the rest of an image cut at a thumbnail EOI."""
        decoder = MjpegDecoder()
        body = b"".join(build_part(exif_jpeg(i), content_length=False) for i in range(2))

        with pytest.raises(DecodeError):
            decoder.feed(body)



class TestDecode:
    """Tests for the async decode() wrapper."""

    @pytest.mark.asyncio
    async def test_yields_frames_from_async_chunks(self):
        """Should yield images in stream order."""
        async def chunks():
            yield build_part(build_jpeg(1))[:10]
            yield build_part(build_jpeg(1))[10:] + build_part(build_jpeg(2))

        frames = [frame async for frame in MjpegDecoder().decode(chunks())]

        assert frames == [build_jpeg(1), build_jpeg(2)]


class TestContentTypeHelpers:
    """Tests for content-type helpers."""

    @pytest.mark.parametrize("content_type", [
        "multipart/x-mixed-replace; boundary=frame",
        "multipart/x-mixed-replace;boundary=--myboundary",
        "video/x-motion-jpeg",
    ])
    def test_recognizes_mjpeg(self, content_type):
        """Should accept MJPEG content types."""
        assert is_mjpeg_content_type(content_type)

    @pytest.mark.parametrize("content_type", ["", None, "text/html", "image/png"])
    def test_rejects_other_types(self, content_type):
        """Should reject non-MJPEG content types."""
        assert not is_mjpeg_content_type(content_type)

    def test_parses_quoted_boundary(self):
        """Should strip quotes around the boundary token."""
        assert parse_boundary('multipart/x-mixed-replace; boundary="--myboundary"') == "--myboundary"

    def test_missing_boundary(self):
        """Should return None when there is no boundary parameter."""
        assert parse_boundary("image/jpeg") is None
