"""Screenshot service.

Returns one JPEG frame on demand:
- Session active (DRAINING/STREAMING): the controller's latest frame,
  no new connection
- IDLE: one transient connection via capture_once(), bounded by a timeout

Concurrency:
    Transient captures are single-flight. Callers arriving while a capture
    is in progress await the same task instead of opening a second
    connection. Each caller awaits through asyncio.shield(), so one caller
    giving up does not cancel the capture for the others.

Cancellation:
    cancel() (called when the camera stops) aborts the in-flight capture;
    every waiter gets ScreenshotCancelledError.

Logging Strategy:
    DEBUG - Cached screenshots, joined captures
    INFO  - Transient capture started
    WARN  - Capture failed, timed out or was cancelled
"""
from __future__ import annotations

import asyncio
import logging

from .. import metrics
from ..exceptions import CameraError, ScreenshotCancelledError, ScreenshotTimeoutError
from ..models.frame import FrameEvent
from .topology import PipeTopologyController

logger = logging.getLogger(__name__)


class ScreenshotService:
    """Latest-frame or transient-capture screenshots for one camera.

    Args:
        controller: The camera's topology controller
        timeout: Seconds a transient capture may take (None = unbounded)
    """

    def __init__(self, controller: PipeTopologyController, timeout: float | None = 10.0) -> None:
        self._controller = controller
        self.timeout = timeout
        self._inflight: asyncio.Task[FrameEvent] | None = None

    @property
    def capture_in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def get_screenshot(self) -> FrameEvent:
        """Return a single frame.

        Raises:
            NoFrameYetError: Session active but no frame has arrived yet
            ScreenshotTimeoutError: Transient capture exceeded the timeout
            ScreenshotCancelledError: Camera stopped during the capture
            CameraConnectionError: Transient connect failed
            DecodeError: Transient stream was malformed
        """
        name = self._controller.name

        if self._controller.is_active:
            try:
                frame = self._controller.require_latest_frame()
            except CameraError:
                metrics.screenshots_total.labels(camera=name, mode="cached", outcome="error").inc()
                raise
            metrics.screenshots_total.labels(camera=name, mode="cached", outcome="ok").inc()
            logger.debug(f"[{name}] Screenshot from running session ({frame.size} bytes)")
            return frame

        task = self._inflight
        if task is None or task.done():
            logger.info(f"[{name}] Screenshot via transient connection")
            task = asyncio.create_task(self._capture(), name=f"mjpeg-screenshot-{name}")
            task.add_done_callback(self._on_done)
            self._inflight = task
        else:
            logger.debug(f"[{name}] Joining in-flight screenshot capture")

        try:
            frame = await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and not (current is not None and current.cancelling()):
                metrics.screenshots_total.labels(camera=name, mode="transient", outcome="cancelled").inc()
                logger.warning(f"[{name}] Screenshot cancelled")
                raise ScreenshotCancelledError(f"[{name}] Screenshot cancelled") from None
            raise
        except ScreenshotTimeoutError:
            metrics.screenshots_total.labels(camera=name, mode="transient", outcome="timeout").inc()
            raise
        except CameraError as e:
            metrics.screenshots_total.labels(camera=name, mode="transient", outcome="error").inc()
            logger.warning(f"[{name}] Screenshot failed: {e}")
            raise

        metrics.screenshots_total.labels(camera=name, mode="transient", outcome="ok").inc()
        return frame

    async def cancel(self) -> None:
        """Abort the in-flight transient capture, if any, and wait for it to unwind."""
        task = self._inflight
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _capture(self) -> FrameEvent:
        if self.timeout is None:
            return await self._controller.capture_once()
        try:
            return await asyncio.wait_for(self._controller.capture_once(), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self._controller.name}] Screenshot timed out after {self.timeout}s")
            raise ScreenshotTimeoutError(
                f"[{self._controller.name}] No frame within {self.timeout}s"
            ) from None

    def _on_done(self, task: asyncio.Task[FrameEvent]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark retrieved; waiters re-raise it through shield()
            task.exception()
