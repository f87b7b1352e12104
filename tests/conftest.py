"""
Shared fixtures for camera tests.

FakeConnection stands in for ConnectionManager: every open() hands out a
FakeStream whose bytes the test pushes explicitly, so frame arrival is
fully deterministic.
"""

import asyncio
import time

import pytest

from mjpeg_camera.exceptions import (
    AlreadyConnectedError,
    CameraConnectionError,
    RetryExhaustedError,
)

BOUNDARY = "frame"
MJPEG_CONTENT_TYPE = f"multipart/x-mixed-replace; boundary={BOUNDARY}"

_END = object()


def build_jpeg(index: int) -> bytes:
    """Marker-delimited payload; the body never contains FF D8 / FF D9."""
    return b"\xff\xd8" + f"frame-{index:04d}".encode() + b"\xff\xd9"


def build_part(jpeg: bytes, content_length: bool = True) -> bytes:
    headers = b"--" + BOUNDARY.encode() + b"\r\nContent-Type: image/jpeg\r\n"
    if content_length:
        headers += b"Content-Length: " + str(len(jpeg)).encode() + b"\r\n"
    return headers + b"\r\n" + jpeg + b"\r\n"


class FakeStream:
    """ByteSource fed by the test."""

    def __init__(self, content_type=MJPEG_CONTENT_TYPE):
        self.content_type = content_type
        self.aborted = False
        self._queue = asyncio.Queue()

    def push(self, data: bytes) -> None:
        self._queue.put_nowait(data)

    def push_frame(self, index: int) -> bytes:
        jpeg = build_jpeg(index)
        self.push(build_part(jpeg))
        return jpeg

    def fail(self, error: BaseException) -> None:
        self._queue.put_nowait(error)

    def end(self) -> None:
        self._queue.put_nowait(_END)

    async def iter_chunks(self):
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def abort(self) -> None:
        self.aborted = True


class FakeConnection:
    """ConnectionManager double with scripted failures and a reconnect bound."""

    def __init__(self, max_reconnects=None):
        self.max_reconnects = max_reconnects
        self.open_failures: list[Exception] = []
        self.streams: list[FakeStream] = []
        self.open_count = 0
        self.close_count = 0
        self.reconnect_attempts = 0
        self.last_error = None
        self._current = None

    @property
    def is_open(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> FakeStream:
        assert self._current is not None, "no open stream"
        return self._current

    async def open(self) -> FakeStream:
        if self._current is not None:
            raise AlreadyConnectedError("already open")
        if self.open_failures:
            error = self.open_failures.pop(0)
            self.last_error = str(error)
            raise error
        stream = FakeStream()
        self.streams.append(stream)
        self._current = stream
        self.open_count += 1
        return stream

    async def close(self) -> None:
        stream, self._current = self._current, None
        if stream is not None:
            self.close_count += 1
            await stream.abort()

    async def reconnect(self) -> FakeStream:
        await self.close()
        self.reconnect_attempts += 1
        if self.max_reconnects is not None and self.reconnect_attempts > self.max_reconnects:
            raise RetryExhaustedError(f"gave up after {self.max_reconnects}")
        await asyncio.sleep(0)
        return await self.open()

    def mark_healthy(self) -> None:
        self.reconnect_attempts = 0
        self.last_error = None

    async def aclose(self) -> None:
        await self.close()


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def jpeg():
    return build_jpeg


@pytest.fixture
def part():
    return build_part
