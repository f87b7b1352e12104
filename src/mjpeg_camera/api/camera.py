"""REST API endpoints for the camera.

Thin HTTP surface over the Camera singleton:
- GET  /api/camera           status
- POST /api/camera/start     begin continuous streaming
- POST /api/camera/stop      end streaming (idempotent)
- GET  /api/camera/mjpeg     live multipart/x-mixed-replace re-publication
- GET  /api/camera/snapshot  single JPEG (latest frame or transient capture)

Camera domain errors propagate to the handlers in api/errors.py.

Logging Strategy:
    DEBUG - Frame counts per viewer
    INFO  - Start/stop requests, viewer connect/disconnect, snapshots
    WARN  - Viewer rejected (camera not running)
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Final

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response, StreamingResponse

from ..models.camera import CameraStatus
from ..models.frame import FrameEvent
from ..services.camera import Camera
from ..services.container import get_camera
from ..services.topology import QueueConsumer
from .errors import raise_camera_not_running

logger = logging.getLogger(__name__)

router = APIRouter(tags=["camera"])

# ============================================================================
# Constants
# ============================================================================

MJPEG_BOUNDARY: Final[str] = "frame"
VIEWER_MAX_PENDING: Final[int] = 2
"""Frames buffered per viewer; slow viewers skip frames instead of stalling."""

NO_CACHE_HEADERS: Final[dict[str, str]] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def format_mjpeg_part(frame: FrameEvent) -> bytes:
    """Encode one frame as a multipart/x-mixed-replace part."""
    return (
        b"--" + MJPEG_BOUNDARY.encode() + b"\r\n"
        b"Content-Type: image/jpeg\r\n"
        b"Content-Length: " + str(frame.size).encode() + b"\r\n\r\n" +
        frame.data + b"\r\n"
    )


# ============================================================================
# Lifecycle Endpoints
# ============================================================================

@router.get("")
async def get_status(camera: Camera = Depends(get_camera)) -> CameraStatus:
    """Current camera state, counters and last error."""
    return camera.status()


@router.post("/start")
async def start_camera(camera: Camera = Depends(get_camera)) -> CameraStatus:
    """Start continuous streaming. 409 if already running."""
    logger.info(f"Start requested: {camera.name}")
    await camera.start()
    return camera.status()


@router.post("/stop")
async def stop_camera(camera: Camera = Depends(get_camera)) -> CameraStatus:
    """Stop streaming. Always succeeds."""
    logger.info(f"Stop requested: {camera.name}")
    await camera.stop()
    return camera.status()


# ============================================================================
# Streaming Endpoints
# ============================================================================

@router.get("/mjpeg")
async def stream_mjpeg(camera: Camera = Depends(get_camera)) -> StreamingResponse:
    """Re-publish the camera as MJPEG for as long as the client stays connected.

    The viewer is attached as a consumer for the lifetime of the response
    and detached on disconnect. The response ends when the camera stops.
    """
    if not camera.is_running:
        logger.warning(f"MJPEG rejected - camera not running: {camera.name}")
        raise_camera_not_running(camera.name, camera.state.value)

    async def generate_frames() -> AsyncIterator[bytes]:
        consumer = camera.attach(QueueConsumer(max_pending=VIEWER_MAX_PENDING, name="mjpeg-viewer"))
        logger.info(f"MJPEG viewer connected: {camera.name}")
        frame_count = 0
        try:
            async for frame in consumer:
                yield format_mjpeg_part(frame)
                frame_count += 1
                if frame_count % 100 == 0:
                    logger.debug(f"MJPEG {camera.name}: {frame_count} frames")
        except asyncio.CancelledError:
            logger.info(f"MJPEG viewer disconnected: {camera.name} ({frame_count} frames)")
            raise
        finally:
            camera.detach(consumer)

    return StreamingResponse(
        generate_frames(),
        media_type=f"multipart/x-mixed-replace; boundary={MJPEG_BOUNDARY}",
        headers={**NO_CACHE_HEADERS, "Connection": "close"},
    )


@router.get("/snapshot", status_code=status.HTTP_200_OK)
async def get_snapshot(camera: Camera = Depends(get_camera)) -> Response:
    """Single JPEG: the running session's latest frame, or a transient capture."""
    frame = await camera.get_screenshot()
    logger.info(f"Snapshot served: {camera.name} ({frame.size} bytes)")
    return Response(
        content=frame.data,
        media_type="image/jpeg",
        headers={
            **NO_CACHE_HEADERS,
            "X-Frame-Timestamp": f"{frame.timestamp:.6f}",
            "X-Camera-Name": frame.source_name or camera.name,
        },
    )
