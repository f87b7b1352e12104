"""
Unit tests for the video decode pipeline.
"""

import logging

import pytest

from mjpeg_camera.models.frame import FrameEvent
from mjpeg_camera.services.pipeline import VideoPipeline

from conftest import FakeStream, build_jpeg, build_part


def ticking_clock(start=100.0):
    now = [start]

    def clock():
        now[0] += 1.0
        return now[0]
    return clock


class TestBuild:
    """Tests for VideoPipeline.build()."""

    @pytest.mark.asyncio
    async def test_emits_frame_events_in_order(self):
        """Should turn each multipart image into a FrameEvent stamped by the clock."""
        stream = FakeStream()
        for i in range(3):
            stream.push_frame(i)
        stream.end()

        pipeline = VideoPipeline(camera="cam", clock=ticking_clock())
        events = [event async for event in pipeline.build(stream)]

        assert [event.data for event in events] == [build_jpeg(i) for i in range(3)]
        assert [event.timestamp for event in events] == [101.0, 102.0, 103.0]
        assert all(event.source_name is None for event in events)

    @pytest.mark.asyncio
    async def test_warns_on_unexpected_content_type(self, caplog):
        """Should decode anyway but log the odd content type."""
        stream = FakeStream(content_type="text/html")
        stream.push_frame(1)
        stream.end()

        with caplog.at_level(logging.WARNING):
            events = [event async for event in VideoPipeline(camera="cam").build(stream)]

        assert len(events) == 1
        assert "text/html" in caplog.text

    @pytest.mark.asyncio
    async def test_motion_filter_only_when_enabled(self):
        """Should route frames through the motion filter only when asked."""
        calls = []

        def motion_filter_factory():
            async def keep_even(frames):
                calls.append(True)
                async for frame in frames:
                    if frame.data.endswith(b"0\xff\xd9") or frame.data.endswith(b"2\xff\xd9"):
                        yield frame
            return keep_even

        pipeline = VideoPipeline(camera="cam", motion_filter_factory=motion_filter_factory)

        plain = FakeStream()
        for i in range(3):
            plain.push_frame(i)
        plain.end()
        assert len([e async for e in pipeline.build(plain, motion_enabled=False)]) == 3
        assert calls == []

        filtered = FakeStream()
        for i in range(3):
            filtered.push_frame(i)
        filtered.end()
        events = [e async for e in pipeline.build(filtered, motion_enabled=True)]
        assert [e.data for e in events] == [build_jpeg(0), build_jpeg(2)]
        assert calls == [True]

    @pytest.mark.asyncio
    async def test_fresh_decoder_per_build(self):
        """Should not carry partial bytes from one connection into the next."""
        pipeline = VideoPipeline(camera="cam")

        first = FakeStream()
        first.push(b"--frame\r\n\r\n\xff\xd8partial")
        first.end()
        assert [e async for e in pipeline.build(first)] == []

        second = FakeStream()
        second.push_frame(5)
        second.end()
        events = [e async for e in pipeline.build(second)]

        assert [e.data for e in events] == [build_jpeg(5)]
        assert isinstance(events[0], FrameEvent)

    @pytest.mark.asyncio
    async def test_decodes_with_response_boundary(self):
        """Should split on the Content-Type boundary so embedded EOI markers survive."""
        image = b"\xff\xd8\xff\xe1EXIF\xff\xd8thumb\xff\xd9main-image\xff\xd9"
        stream = FakeStream()
        stream.push(build_part(image, content_length=False))
        stream.push(build_part(build_jpeg(2), content_length=False))
        stream.push(b"--frame--\r\n")
        stream.end()

        events = [e async for e in VideoPipeline(camera="cam").build(stream)]

        assert [e.data for e in events] == [image, build_jpeg(2)]
