"""Pipe topology controller.

Keeps exactly one upstream session alive per camera and republishes its
frames to whoever is attached.

States:
    IDLE      - no session, no connection
    DRAINING  - session active, no real consumer; the discard sink absorbs
                every frame so decoding never stalls
    STREAMING - session active, frames fan out to every attached consumer

Transitions:
    start()  IDLE -> DRAINING (or STREAMING if consumers were pre-attached)
    attach() DRAINING -> STREAMING, STREAMING -> STREAMING
    detach() STREAMING -> STREAMING / DRAINING (last consumer gone)
    stop()   any -> IDLE (connection closed, consumers detached)

Concurrency:
    Everything runs on the camera's event loop. attach(), detach() and
    publish() are synchronous, so a discard-sink swap can never interleave
    with a fan-out. start(), stop() and capture_once() serialize through
    one asyncio.Lock.

Backpressure:
    None. Consumers must accept frames without blocking; QueueConsumer
    drops its oldest pending frame instead of waiting. The only buffer the
    controller keeps is the latest frame.

Logging Strategy:
    DEBUG - Per-frame fan-out, no-op transitions
    INFO  - Session start/stop, consumer attach/detach, sink swaps
    WARN  - Connection/decode errors (before reconnect), consumer failures
    ERROR - Session ended by retry exhaustion or an unexpected error
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Final

from .. import metrics
from ..exceptions import (
    AlreadyConnectedError,
    CameraConnectionError,
    DecodeError,
    NoFrameYetError,
    RetryExhaustedError,
)
from ..models.camera import CameraState
from ..models.frame import FrameEvent
from .connection import ConnectionManager, StreamHandle
from .pipeline import VideoPipeline

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

DEFAULT_MAX_PENDING: Final[int] = 4
"""Frames a QueueConsumer holds before dropping the oldest."""

_CLOSED: Final[Any] = object()
"""Queue sentinel marking a detached QueueConsumer."""

# ============================================================================
# Consumers
# ============================================================================

class Consumer:
    """Downstream sink attached to a camera's output.

    deliver() is called on the event loop for every frame and must not
    block. close() is called once when the consumer is detached; a closed
    consumer cannot be attached again.
    """

    name: str = "consumer"
    _closed: bool = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, frame: FrameEvent) -> None:
        raise NotImplementedError

    def close(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class CallbackConsumer(Consumer):
    """Consumer that hands every frame to a synchronous callable."""

    def __init__(self, callback: Callable[[FrameEvent], None], name: str = "callback") -> None:
        self._callback = callback
        self.name = name

    def deliver(self, frame: FrameEvent) -> None:
        self._callback(frame)


class QueueConsumer(Consumer):
    """Async-iterable consumer with a bounded, drop-oldest mailbox.

    Usage:
        consumer = camera.attach(QueueConsumer())
        async for frame in consumer:
            ...

    Iteration ends once the consumer is detached (or the camera stops)
    and the frames still pending have been read.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING, name: str = "queue") -> None:
        if max_pending < 1:
            raise ValueError("max_pending must be >= 1")
        self.name = name
        self.received = 0
        self.dropped = 0
        self._closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_pending)

    def deliver(self, frame: FrameEvent) -> None:
        if self._closed:
            return
        self._make_room()
        self._queue.put_nowait(frame)
        self.received += 1

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._make_room()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[FrameEvent]:
        return self

    async def __anext__(self) -> FrameEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the sentinel for any other reader
            self._queue.put_nowait(item)
            raise StopAsyncIteration
        return item

    def _make_room(self) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1


class DiscardSink(Consumer):
    """Absorbs frames while nobody is listening."""

    name = "discard"

    def __init__(self) -> None:
        self.count = 0

    def deliver(self, frame: FrameEvent) -> None:
        self.count += 1


# ============================================================================
# Controller
# ============================================================================

class PipeTopologyController:
    """Central state machine for one camera's session and fan-out.

    Attributes:
        name: Camera name stamped onto every frame
        motion: Run the motion filter on the continuous session
        frames_received: Frames observed (published or captured)
        last_error: Most recent connection/decode/session error
    """

    def __init__(
        self,
        name: str,
        connection: ConnectionManager,
        pipeline: VideoPipeline,
        *,
        motion: bool = False,
    ) -> None:
        self.name = name
        self.motion = motion
        self._connection = connection
        self._pipeline = pipeline
        self._consumers: list[Consumer] = []
        self._discard = DiscardSink()
        self._latest: FrameEvent | None = None
        self._active = False
        self._pump: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

        self.frames_received = 0
        self.last_error: str | None = None

    # ========================================================================
    # State
    # ========================================================================

    @property
    def state(self) -> CameraState:
        if not self._active:
            return CameraState.IDLE
        return CameraState.STREAMING if self._consumers else CameraState.DRAINING

    @property
    def is_active(self) -> bool:
        """A continuous session is running (DRAINING or STREAMING)."""
        return self._active

    @property
    def using_discard_sink(self) -> bool:
        return self._active and not self._consumers

    @property
    def consumers(self) -> tuple[Consumer, ...]:
        return tuple(self._consumers)

    @property
    def discard_sink(self) -> DiscardSink:
        return self._discard

    @property
    def connected(self) -> bool:
        return self._connection.is_open

    @property
    def latest_frame(self) -> FrameEvent | None:
        """Most recently observed frame, or None before the first one."""
        return self._latest

    def require_latest_frame(self) -> FrameEvent:
        """Most recently observed frame.

        Raises:
            NoFrameYetError: No frame has arrived yet
        """
        if self._latest is None:
            raise NoFrameYetError(f"[{self.name}] No frame received yet")
        return self._latest

    # ========================================================================
    # Attach / Detach
    # ========================================================================

    def attach(self, consumer: Consumer | None = None) -> Consumer:
        """Attach a consumer (a new QueueConsumer if none is given).

        Allowed in any state; a consumer attached while IDLE starts
        receiving frames once the session starts. Attaching twice is a no-op.

        Raises:
            ValueError: The consumer was closed by an earlier detach or stop
        """
        consumer = consumer if consumer is not None else QueueConsumer()
        if consumer in self._consumers:
            return consumer
        if consumer.closed:
            raise ValueError(f"[{self.name}] Consumer {consumer.name} is closed; attach a new one")

        swapping = self.using_discard_sink
        self._consumers.append(consumer)
        metrics.consumers_attached.labels(camera=self.name).set(len(self._consumers))

        logger.info(f"[{self.name}] Consumer attached: {consumer.name} (total: {len(self._consumers)})")
        if swapping:
            logger.info(f"[{self.name}] Discard sink disengaged")
        return consumer

    def detach(self, consumer: Consumer) -> None:
        """Detach and close a consumer. Unknown consumers are ignored."""
        if consumer not in self._consumers:
            return

        self._consumers.remove(consumer)
        consumer.close()
        metrics.consumers_attached.labels(camera=self.name).set(len(self._consumers))

        logger.info(f"[{self.name}] Consumer detached: {consumer.name} (remaining: {len(self._consumers)})")
        if self.using_discard_sink:
            logger.info(f"[{self.name}] Last consumer gone, discard sink engaged")

    # ========================================================================
    # Session Lifecycle
    # ========================================================================

    async def start(self) -> None:
        """Begin the continuous session.

        Raises:
            AlreadyConnectedError: A session is already active
        """
        async with self._lock:
            if self._active:
                raise AlreadyConnectedError(f"[{self.name}] Session already active")
            self._active = True
            self.last_error = None
            self._pump = asyncio.create_task(self._run(), name=f"mjpeg-camera-{self.name}")

        logger.info(f"[{self.name}] Session started ({self.state.value})")

    async def stop(self) -> None:
        """End the session: stop decoding, close the connection, detach everyone.

        Idempotent; safe in any state. The latest frame is kept.
        """
        pump, self._pump = self._pump, None
        if pump is not None and not pump.done():
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)

        async with self._lock:
            was_active, self._active = self._active, False
            self._detach_all()
            await self._connection.close()

        if was_active:
            logger.info(f"[{self.name}] Session stopped")
        else:
            logger.debug(f"[{self.name}] stop() while idle")

    async def capture_once(self) -> FrameEvent:
        """Open a transient connection, take one frame, close it.

        Runs without the motion filter. If a continuous session is active
        by the time the lock is acquired, returns its latest frame instead.

        Raises:
            CameraConnectionError: Connect failed or stream ended first
            DecodeError: Upstream data was malformed
            NoFrameYetError: A session started meanwhile but has no frame yet
        """
        async with self._lock:
            if self._active:
                return self.require_latest_frame()

            handle = await self._connection.open()
            try:
                async with aclosing(self._pipeline.build(handle, motion_enabled=False)) as frames:
                    frame = await anext(frames, None)
            finally:
                await self._connection.close()

            if frame is None:
                raise CameraConnectionError(f"[{self.name}] Stream ended before a frame arrived")

            frame = frame.stamped(self.name)
            self._latest = frame
            self.frames_received += 1
            logger.info(f"[{self.name}] Transient capture: {frame.size} bytes")
            return frame

    # ========================================================================
    # Frame Path
    # ========================================================================

    def publish(self, frame: FrameEvent) -> FrameEvent:
        """Cache a frame as latest, then fan it out.

        Frames go to every consumer attached at this instant, or to the
        discard sink when there are none. A consumer that raises is logged
        and skipped; the others still receive the frame.

        Returns:
            The frame as delivered (stamped with the camera name)
        """
        frame = frame.stamped(self.name)
        self._latest = frame
        self.frames_received += 1

        if self._consumers:
            targets: tuple[Consumer, ...] = tuple(self._consumers)
            path = "consumers"
        else:
            targets = (self._discard,)
            path = "discard"

        for consumer in targets:
            try:
                consumer.deliver(frame)
            except Exception as e:
                metrics.consumer_failures_total.labels(camera=self.name).inc()
                logger.warning(f"[{self.name}] Consumer {consumer.name} failed: {e}", exc_info=True)

        metrics.frames_published_total.labels(camera=self.name, path=path).inc()
        logger.debug(f"[{self.name}] Frame {frame.size} bytes -> {len(targets)} {path}")
        return frame

    # ========================================================================
    # Pump
    # ========================================================================

    async def _run(self) -> None:
        """Keep one connection open and publish its frames until stopped."""
        reconnect = False
        try:
            while True:
                try:
                    if reconnect:
                        handle = await self._connection.reconnect()
                    else:
                        reconnect = True
                        handle = await self._connection.open()
                    await self._consume(handle)
                    logger.warning(f"[{self.name}] Pipeline ended without error")
                except RetryExhaustedError:
                    raise
                except (CameraConnectionError, DecodeError) as e:
                    self.last_error = str(e)
                    logger.warning(f"[{self.name}] {type(e).__name__}: {e}")

        except RetryExhaustedError as e:
            self.last_error = str(e)
            logger.error(f"[{self.name}] Session ended: {e}")
            self._end_session()
        except asyncio.CancelledError:
            logger.debug(f"[{self.name}] Stream pump cancelled")
            raise
        except Exception as e:
            self.last_error = f"{type(e).__name__}: {e}"
            logger.error(f"[{self.name}] Stream pump failed: {e}", exc_info=True)
            self._end_session()
        finally:
            await self._connection.close()

    async def _consume(self, handle: StreamHandle) -> None:
        async with aclosing(self._pipeline.build(handle, self.motion)) as frames:
            async for frame in frames:
                self._connection.mark_healthy()
                self.publish(frame)

    def _end_session(self) -> None:
        """Drop to IDLE from inside the pump (no further frames will come)."""
        self._active = False
        self._pump = None
        self._detach_all()

    def _detach_all(self) -> None:
        consumers, self._consumers = self._consumers, []
        for consumer in consumers:
            consumer.close()
        metrics.consumers_attached.labels(camera=self.name).set(0)
        if consumers:
            logger.info(f"[{self.name}] Detached {len(consumers)} consumer(s)")
