"""Camera instance: owner-facing facade over one MJPEG camera.

Wires the pieces for a single camera from a CameraConfig:

    ConnectionManager -> VideoPipeline -> PipeTopologyController
                                               |
                                       ScreenshotService

Usage:
    async with Camera(CameraConfig(url="http://cam/video.mjpg")) as camera:
        await camera.start()
        async with camera.subscribe() as frames:
            async for frame in frames:
                ...

Logging Strategy:
    INFO  - Camera created/closed
    DEBUG - Status snapshots
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from ..models.camera import CameraConfig, CameraState, CameraStatus
from ..models.frame import FrameEvent
from ..utils.strings import mask_url_credentials
from .connection import ConnectionManager
from .pipeline import VideoPipeline
from .screenshot import ScreenshotService
from .topology import DEFAULT_MAX_PENDING, Consumer, PipeTopologyController, QueueConsumer

logger = logging.getLogger(__name__)


class Camera:
    """One networked MJPEG camera.

    Args:
        config: Camera configuration
        transport: httpx transport override (tests use httpx.MockTransport)
        connection: Prebuilt ConnectionManager (overrides transport)
        pipeline: Prebuilt VideoPipeline
    """

    def __init__(
        self,
        config: CameraConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        connection: ConnectionManager | None = None,
        pipeline: VideoPipeline | None = None,
    ) -> None:
        self.config = config
        self.connection = connection or ConnectionManager(
            config.url,
            config.user,
            config.password,
            name=config.name,
            retry=config.retry,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            chunk_size=config.chunk_size,
            transport=transport,
        )
        self.pipeline = pipeline or VideoPipeline(
            camera=config.name,
            max_frame_bytes=config.max_frame_bytes,
            motion_settings=config.motion_settings,
        )
        self.controller = PipeTopologyController(
            config.name,
            self.connection,
            self.pipeline,
            motion=config.motion,
        )
        self.screenshots = ScreenshotService(self.controller, timeout=config.screenshot_timeout)

        logger.info(
            f"[{config.name}] Camera created for {mask_url_credentials(config.url)} "
            f"(motion={config.motion})"
        )

    # ========================================================================
    # State
    # ========================================================================

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def state(self) -> CameraState:
        return self.controller.state

    @property
    def is_running(self) -> bool:
        return self.controller.is_active

    @property
    def latest_frame(self) -> FrameEvent | None:
        return self.controller.latest_frame

    def status(self) -> CameraStatus:
        latest = self.controller.latest_frame
        status = CameraStatus(
            name=self.name,
            url=mask_url_credentials(self.config.url),
            state=self.controller.state,
            motion=self.controller.motion,
            connected=self.controller.connected,
            consumers=len(self.controller.consumers),
            using_discard_sink=self.controller.using_discard_sink,
            frames_received=self.controller.frames_received,
            frames_discarded=self.controller.discard_sink.count,
            last_frame_at=latest.timestamp if latest else None,
            reconnect_attempts=self.connection.reconnect_attempts,
            last_error=self.controller.last_error or self.connection.last_error,
        )
        logger.debug(f"[{self.name}] Status: {status.state.value}, {status.consumers} consumer(s)")
        return status

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        """Start continuous streaming (IDLE -> DRAINING)."""
        await self.controller.start()

    async def stop(self) -> None:
        """Cancel any transient screenshot, then stop the session (-> IDLE)."""
        await self.screenshots.cancel()
        await self.controller.stop()

    async def aclose(self) -> None:
        """Stop and release the HTTP client."""
        await self.stop()
        await self.connection.aclose()
        logger.info(f"[{self.name}] Camera closed")

    async def __aenter__(self) -> Camera:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ========================================================================
    # Consumers
    # ========================================================================

    def attach(self, consumer: Consumer | None = None) -> Consumer:
        return self.controller.attach(consumer)

    def detach(self, consumer: Consumer) -> None:
        self.controller.detach(consumer)

    @asynccontextmanager
    async def subscribe(
        self,
        max_pending: int = DEFAULT_MAX_PENDING,
        name: str = "subscriber",
    ) -> AsyncIterator[QueueConsumer]:
        """Attach a QueueConsumer for the duration of the block."""
        consumer = QueueConsumer(max_pending=max_pending, name=name)
        self.controller.attach(consumer)
        try:
            yield consumer
        finally:
            self.controller.detach(consumer)

    # ========================================================================
    # Screenshots
    # ========================================================================

    async def get_screenshot(self) -> FrameEvent:
        return await self.screenshots.get_screenshot()
