"""
Unit tests for the screenshot service.

Covers cached screenshots from a running session, transient captures,
single-flight sharing, timeouts and cancellation by stop().
"""

import asyncio

import pytest

from mjpeg_camera.exceptions import (
    CameraConnectionError,
    NoFrameYetError,
    ScreenshotCancelledError,
    ScreenshotTimeoutError,
)
from mjpeg_camera.models.camera import CameraConfig, CameraState
from mjpeg_camera.services.camera import Camera
from mjpeg_camera.services.pipeline import VideoPipeline
from mjpeg_camera.services.screenshot import ScreenshotService
from mjpeg_camera.services.topology import PipeTopologyController

from conftest import build_jpeg


def make_service(connection, timeout=2.0):
    controller = PipeTopologyController("cam", connection, VideoPipeline(camera="cam"))
    return controller, ScreenshotService(controller, timeout=timeout)


class TestCachedScreenshots:
    """Tests for screenshots while a session is active."""

    @pytest.mark.asyncio
    async def test_returns_latest_frame_without_new_connection(self, connection, wait_until):
        """Should serve the running session's latest frame."""
        controller, service = make_service(connection)
        await controller.start()
        await wait_until(lambda: connection.is_open)
        connection.current.push_frame(1)
        connection.current.push_frame(2)
        await wait_until(lambda: controller.frames_received == 2)

        frame = await service.get_screenshot()

        assert frame.data == build_jpeg(2)
        assert connection.open_count == 1
        assert controller.state == CameraState.DRAINING
        await controller.stop()

    @pytest.mark.asyncio
    async def test_no_frame_yet(self, connection, wait_until):
        """Should raise NoFrameYetError when the session has no frame yet."""
        controller, service = make_service(connection)
        await controller.start()
        await wait_until(lambda: connection.is_open)

        with pytest.raises(NoFrameYetError):
            await service.get_screenshot()
        await controller.stop()


class TestTransientScreenshots:
    """Tests for screenshots while IDLE."""

    @pytest.mark.asyncio
    async def test_opens_and_closes_one_connection(self, connection, wait_until):
        """Should capture one frame and return to IDLE with nothing open."""
        controller, service = make_service(connection)

        task = asyncio.create_task(service.get_screenshot())
        await wait_until(lambda: connection.is_open)
        connection.current.push_frame(5)
        frame = await task

        assert frame.data == build_jpeg(5)
        assert frame.source_name == "cam"
        assert connection.open_count == 1
        assert not connection.is_open
        assert controller.state == CameraState.IDLE
        assert controller.latest_frame is frame
        assert not service.capture_in_progress

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_capture(self, connection, wait_until):
        """Should open a single transient connection for simultaneous callers."""
        controller, service = make_service(connection)

        first = asyncio.create_task(service.get_screenshot())
        second = asyncio.create_task(service.get_screenshot())
        await wait_until(lambda: connection.is_open)
        connection.current.push_frame(1)
        frames = await asyncio.gather(first, second)

        assert frames[0] is frames[1]
        assert connection.open_count == 1

    @pytest.mark.asyncio
    async def test_times_out(self, connection):
        """Should raise ScreenshotTimeoutError and close the transient connection."""
        controller, service = make_service(connection, timeout=0.05)

        with pytest.raises(ScreenshotTimeoutError):
            await service.get_screenshot()

        assert isinstance(ScreenshotTimeoutError("x"), TimeoutError)
        assert not connection.is_open
        assert controller.state == CameraState.IDLE

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self, connection):
        """Should surface a failed transient connect to the caller."""
        connection.open_failures = [CameraConnectionError("refused")]
        controller, service = make_service(connection)

        with pytest.raises(CameraConnectionError):
            await service.get_screenshot()

    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight_capture(self, connection, wait_until):
        """Should give every waiter ScreenshotCancelledError."""
        controller, service = make_service(connection)

        waiters = [asyncio.create_task(service.get_screenshot()) for _ in range(2)]
        await wait_until(lambda: connection.is_open)
        await service.cancel()

        for waiter in waiters:
            with pytest.raises(ScreenshotCancelledError):
                await waiter
        assert not connection.is_open

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_capture_running(self, connection, wait_until):
        """Should keep capturing for the others when one caller gives up."""
        controller, service = make_service(connection)

        impatient = asyncio.create_task(service.get_screenshot())
        patient = asyncio.create_task(service.get_screenshot())
        await wait_until(lambda: connection.is_open)
        impatient.cancel()
        await asyncio.gather(impatient, return_exceptions=True)

        connection.current.push_frame(3)
        frame = await patient

        assert impatient.cancelled()
        assert frame.data == build_jpeg(3)


class TestCameraStopCancelsScreenshot:
    """Tests for Camera.stop() during a transient capture."""

    @pytest.mark.asyncio
    async def test_stop_cancels_transient_capture(self, connection, wait_until):
        """Should never hand a stale frame to a screenshot cut short by stop()."""
        camera = Camera(CameraConfig(name="cam", url="http://cam.local/video"), connection=connection)

        task = asyncio.create_task(camera.get_screenshot())
        await wait_until(lambda: connection.is_open)
        await camera.stop()

        with pytest.raises(ScreenshotCancelledError):
            await task
        assert camera.state == CameraState.IDLE
        assert not connection.is_open
        await camera.aclose()
