"""Upstream HTTP connection management.

Owns the single streaming GET to the camera:
- open(): authenticated streaming request, returns a StreamHandle
- close(): abort the open response (no-op when nothing is open)
- reconnect(): close, back off per RetryPolicy, open again

Authentication:
    ChallengeAuth never sends credentials on the first request. A 401
    carrying a Digest challenge is answered with digest auth, a Basic
    challenge with basic auth. This keeps digest-only cameras working
    without leaking a basic password to them.

Invariant:
    At most one open StreamHandle per ConnectionManager. open() with a
    handle still open raises AlreadyConnectedError.

Logging Strategy:
    DEBUG - Request details, no-op closes
    INFO  - Connection opened/closed
    WARN  - Connection failures, reconnect backoff
    ERROR - Retry policy exhausted
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Generator
from urllib.parse import unquote, urlsplit, urlunsplit

import httpx

from .. import metrics
from ..exceptions import (
    AlreadyConnectedError,
    CameraConnectionError,
    NotConnectedError,
    RetryExhaustedError,
)
from ..models.camera import RetryPolicy
from ..utils.strings import mask_url_credentials

logger = logging.getLogger(__name__)

# ============================================================================
# Authentication
# ============================================================================

class ChallengeAuth(httpx.Auth):
    """Send the first request without credentials, then answer the camera's Basic or Digest challenge."""

    def __init__(self, username: str, password: str) -> None:
        self._basic = httpx.BasicAuth(username, password)
        self._digest = httpx.DigestAuth(username, password)

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        response = yield request
        if response.status_code != 401:
            return

        challenges = {
            header.split(" ", 1)[0].strip().lower(): header
            for header in response.headers.get_list("www-authenticate")
        }

        if "digest" in challenges:
            # DigestAuth parses the whole header, so hand it the Digest challenge alone
            challenge = httpx.Response(
                401,
                headers={"www-authenticate": challenges["digest"]},
                request=request,
            )
            flow = self._digest.auth_flow(request)
            next(flow)
            try:
                yield flow.send(challenge)
            except StopIteration:
                return
        elif "basic" in challenges:
            yield next(self._basic.auth_flow(request))


# ============================================================================
# Stream Handle
# ============================================================================

class StreamHandle:
    """Live streaming response from the camera.

    Not restartable: once the body ends or the handle is aborted, open a
    new connection for more bytes.
    """

    def __init__(self, response: httpx.Response, chunk_size: int = 8192) -> None:
        self._response = response
        self._chunk_size = chunk_size
        self._aborted = False

    @property
    def content_type(self) -> str:
        return self._response.headers.get("content-type", "")

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def aborted(self) -> bool:
        return self._aborted

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield body chunks until the camera hangs up.

        Raises:
            CameraConnectionError: Transport failure or end of stream
                (a camera stream has no natural end)
        """
        try:
            # aiter_bytes(n) would hold data back until n bytes arrive
            async for data in self._response.aiter_bytes():
                for start in range(0, len(data), self._chunk_size):
                    yield data[start:start + self._chunk_size]
        except (httpx.RequestError, httpx.StreamError) as e:
            if self._aborted:
                return
            raise CameraConnectionError(f"Stream interrupted: {e!r}") from e

        if not self._aborted:
            raise CameraConnectionError("Camera closed the stream")

    async def abort(self) -> None:
        """Close the response; subsequent reads end quietly."""
        self._aborted = True
        await self._response.aclose()


# ============================================================================
# Connection Manager
# ============================================================================

class ConnectionManager:
    """Lifecycle of the one upstream connection for a camera.

    Attributes:
        open_count: Successful opens over the manager's lifetime
        reconnect_attempts: Consecutive reconnect attempts since the last
            healthy frame (reset by mark_healthy())
        last_error: Message of the most recent connection failure
    """

    def __init__(
        self,
        url: str,
        user: str | None = None,
        password: str | None = None,
        *,
        name: str = "camera",
        retry: RetryPolicy | None = None,
        connect_timeout: float = 10.0,
        read_timeout: float | None = 30.0,
        chunk_size: int = 8192,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.name = name
        self.retry = retry or RetryPolicy()

        # Credentials in the URL go through the challenge flow too; httpx
        # would otherwise send them as preemptive basic auth
        parts = urlsplit(url)
        if "@" in parts.netloc:
            userinfo, _, hostport = parts.netloc.rpartition("@")
            url_user, _, url_password = userinfo.partition(":")
            user = user or unquote(url_user)
            password = password if password is not None else unquote(url_password)
            parts = parts._replace(netloc=hostport)
        self._target = urlunsplit(parts)
        self._auth = ChallengeAuth(user, password or "") if user else None
        self._timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._chunk_size = chunk_size
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._handle: StreamHandle | None = None

        self.open_count = 0
        self.reconnect_attempts = 0
        self.last_error: str | None = None

    # ========================================================================
    # State
    # ========================================================================

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def handle(self) -> StreamHandle:
        """The open stream.

        Raises:
            NotConnectedError: Nothing is open
        """
        if self._handle is None:
            raise NotConnectedError(f"[{self.name}] No open connection")
        return self._handle

    def mark_healthy(self) -> None:
        """Reset the backoff after data arrived on the current connection."""
        if self.reconnect_attempts:
            logger.info(f"[{self.name}] Stream healthy after {self.reconnect_attempts} reconnect attempt(s)")
        self.reconnect_attempts = 0
        self.last_error = None

    # ========================================================================
    # Open / Close
    # ========================================================================

    async def open(self) -> StreamHandle:
        """Open the authenticated streaming GET.

        Returns:
            Handle over the live response body

        Raises:
            AlreadyConnectedError: A connection is already open
            CameraConnectionError: Network failure or HTTP error status
        """
        if self._handle is not None:
            raise AlreadyConnectedError(f"[{self.name}] Connection already open")

        safe_url = mask_url_credentials(self.url)
        logger.debug(f"[{self.name}] Connecting to {safe_url}")

        client = self._get_client()
        request = client.build_request(
            "GET",
            self._target,
            headers={"Accept": "multipart/x-mixed-replace, image/jpeg;q=0.9, */*;q=0.1"},
        )

        try:
            response = await client.send(request, auth=self._auth, stream=True)
        except httpx.HTTPError as e:
            self._record_failure(f"Connect to {safe_url} failed: {e!r}")
            raise CameraConnectionError(self.last_error) from e

        if response.is_error:
            await response.aclose()
            self._record_failure(f"Camera returned HTTP {response.status_code} for {safe_url}")
            raise CameraConnectionError(self.last_error)

        self._handle = StreamHandle(response, self._chunk_size)
        self.open_count += 1
        metrics.connections_opened_total.labels(camera=self.name).inc()
        metrics.connection_open.labels(camera=self.name).set(1)
        logger.info(
            f"[{self.name}] Connected to {safe_url} "
            f"({response.status_code}, {response.headers.get('content-type', 'no content-type')})"
        )
        return self._handle

    async def close(self) -> None:
        """Abort the open connection. No-op when nothing is open."""
        handle, self._handle = self._handle, None
        if handle is None:
            logger.debug(f"[{self.name}] close() with no open connection")
            return

        metrics.connection_open.labels(camera=self.name).set(0)
        await handle.abort()
        logger.info(f"[{self.name}] Connection closed")

    async def reconnect(self) -> StreamHandle:
        """Close, wait out the backoff delay, and open again.

        Raises:
            RetryExhaustedError: RetryPolicy.max_attempts exceeded
            CameraConnectionError: This attempt failed (call again to retry)
        """
        await self.close()

        self.reconnect_attempts += 1
        if self.retry.exhausted(self.reconnect_attempts):
            logger.error(
                f"[{self.name}] Giving up after {self.retry.max_attempts} reconnect attempt(s): "
                f"{self.last_error}"
            )
            raise RetryExhaustedError(
                f"[{self.name}] Gave up after {self.retry.max_attempts} reconnect attempt(s)"
            )

        delay = self.retry.delay_for(self.reconnect_attempts)
        metrics.reconnect_attempts_total.labels(camera=self.name).inc()
        logger.warning(
            f"[{self.name}] Reconnecting in {delay:.2f}s (attempt {self.reconnect_attempts})"
        )
        await self._sleep(delay)
        return await self.open()

    async def aclose(self) -> None:
        """Close the connection and release the HTTP client."""
        await self.close()
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    # ========================================================================
    # Internals
    # ========================================================================

    def _get_client(self) -> httpx.AsyncClient:
        """Create the AsyncClient lazily, inside the running event loop."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    def _record_failure(self, message: str) -> None:
        self.last_error = message
        metrics.connection_failures_total.labels(camera=self.name).inc()
        logger.warning(f"[{self.name}] {message}")
