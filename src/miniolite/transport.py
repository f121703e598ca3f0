"""HTTP transport for miniolite.

Executes signed requests over a single long-lived ``httpx.Client`` whose
connection pool is reused for every call made through one client instance.
The pool is opened at construction and released exactly once by
:meth:`Transport.close`.
"""

import logging
import os
import time
from collections.abc import Callable, Iterator
from typing import IO

import httpx

from miniolite import metrics
from miniolite.errors import TransportError
from miniolite.models import RawResponse, SignedRequest

logger = logging.getLogger(__name__)

# Seconds allowed to establish a connection.
CONNECT_TIMEOUT = 30.0
# A transfer is aborted when it averages fewer than LOW_SPEED_LIMIT
# bytes/second over LOW_SPEED_TIME seconds. A transfer that moves no byte
# at all for LOW_SPEED_TIME seconds is aborted by the httpx read/write timeout.
LOW_SPEED_LIMIT = 1
LOW_SPEED_TIME = 30.0

# Upload chunk size: 64 KB
_CHUNK_SIZE = 64 * 1024


class SpeedGuard:
    """Aborts a transfer whose average rate over a window falls below a floor.

    Bytes are counted as they move. Each time a full window has elapsed the
    average rate over that window is checked and the window restarts. A
    limit of zero disables the check.

    Attributes:
        limit: Minimum average rate in bytes per second.
        window: Length of the measuring window in seconds.
    """

    def __init__(
        self,
        limit: float = LOW_SPEED_LIMIT,
        window: float = LOW_SPEED_TIME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window = window
        self._clock = clock
        self._start = clock()
        self._bytes = 0

    def update(self, count: int) -> None:
        """Record ``count`` transferred bytes.

        Raises:
            TransportError: If the rate over the elapsed window is below
                the limit.
        """
        if self.limit <= 0 or self.window <= 0:
            return
        self._bytes += count
        now = self._clock()
        elapsed = now - self._start
        if elapsed < self.window:
            return
        if self._bytes / elapsed < self.limit:
            raise TransportError(
                f"Transfer too slow: {self._bytes} bytes in {elapsed:.1f}s "
                f"(minimum {self.limit} bytes/s over {self.window}s)"
            )
        self._start = now
        self._bytes = 0


class Transport:
    """Synchronous executor for signed requests.

    Not safe for simultaneous use from several threads; one client drives
    one request at a time.

    Attributes:
        endpoint: Base URL of the storage service.
    """

    def __init__(
        self,
        endpoint: str,
        connect_timeout: float = CONNECT_TIMEOUT,
        low_speed_time: float = LOW_SPEED_TIME,
        max_connections: int = 10,
        http_transport: httpx.BaseTransport | None = None,
        low_speed_limit: float = LOW_SPEED_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Open the connection pool.

        Args:
            endpoint: Base URL (scheme, host and optional port).
            connect_timeout: Connect timeout in seconds.
            low_speed_time: Window, in seconds, over which the transfer rate
                is measured; also the longest wait for a single byte.
            max_connections: Connection pool size.
            http_transport: Optional httpx transport (e.g. ``httpx.MockTransport``).
            low_speed_limit: Minimum average rate in bytes per second; 0
                disables the rate check.
            clock: Monotonic clock used to measure transfer rates.
        """
        self.endpoint = endpoint.rstrip("/")
        self.low_speed_limit = low_speed_limit
        self.low_speed_time = low_speed_time
        self._clock = clock
        self._closed = False
        self._client = httpx.Client(
            base_url=self.endpoint,
            timeout=httpx.Timeout(
                connect=connect_timeout,
                read=low_speed_time,
                write=low_speed_time,
                pool=connect_timeout,
            ),
            limits=httpx.Limits(max_connections=max_connections),
            transport=http_transport,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def execute(self, signed: SignedRequest) -> RawResponse:
        """Send one signed request and wait for the complete response.

        HTTP error statuses are returned as ordinary responses.

        Args:
            signed: The signed request.

        Returns:
            The raw status, headers and body.

        Raises:
            TransportError: On connect, DNS, timeout or protocol failures, or
                when the transport has been closed.
        """
        if self._closed:
            raise TransportError("Transport is closed.")

        headers = dict(signed.headers)
        content, sent = _prepare_body(signed.body, headers, self._guard)

        start = time.monotonic()
        try:
            request = self._client.build_request(
                signed.method, signed.resource_path, headers=headers, content=content
            )
            response = self._client.send(request, stream=True)
            try:
                body = self._read_body(response)
            finally:
                response.close()
        except httpx.RequestError as exc:
            self._log_failure(signed, exc)
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        except TransportError as exc:
            self._log_failure(signed, exc)
            raise

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        raw = RawResponse(
            status_code=response.status_code,
            headers=_join_headers(response.headers),
            body=body,
        )
        metrics.record_bytes(sent=sent, received=len(raw.body))
        logger.debug(
            "%s %s -> %d (%.2f ms)",
            signed.method,
            signed.resource_path,
            raw.status_code,
            duration_ms,
            extra={
                "method": signed.method,
                "path": signed.resource_path,
                "status": raw.status_code,
                "duration_ms": duration_ms,
            },
        )
        return raw

    def _guard(self) -> SpeedGuard:
        return SpeedGuard(self.low_speed_limit, self.low_speed_time, self._clock)

    def _read_body(self, response: httpx.Response) -> bytes:
        guard = self._guard()
        chunks = []
        for chunk in response.iter_bytes():
            chunks.append(chunk)
            guard.update(len(chunk))
        return b"".join(chunks)

    def _log_failure(self, signed: SignedRequest, exc: Exception) -> None:
        metrics.record_transport_error()
        logger.warning(
            "%s %s failed: %s",
            signed.method,
            signed.resource_path,
            exc,
            extra={"method": signed.method, "path": signed.resource_path},
        )

    def close(self) -> None:
        """Release the connection pool. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._client.close()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, "_client", None) is not None:
            self.close()


def _prepare_body(
    body: bytes | IO[bytes] | None,
    headers: dict[str, str],
    guard_factory: Callable[[], SpeedGuard],
) -> tuple[bytes | Iterator[bytes] | None, int]:
    """Turn a request body into httpx content without buffering files.

    Sets ``Content-Length`` for file bodies whose size can be determined so
    the upload is not sent chunked. File uploads are rate-checked by a guard
    from ``guard_factory`` as httpx pulls each chunk.

    Returns:
        The content argument for httpx and the number of bytes to be sent.
    """
    if body is None:
        return None, 0
    if isinstance(body, (bytes, bytearray)):
        return bytes(body), len(body)

    size = _remaining_size(body)
    if size is not None:
        headers["Content-Length"] = str(size)
    return _iter_file(body, guard_factory), size or 0


def _remaining_size(fh: IO[bytes]) -> int | None:
    try:
        return os.fstat(fh.fileno()).st_size - fh.tell()
    except (AttributeError, OSError, ValueError):
        pass
    if not getattr(fh, "seekable", lambda: False)():
        return None
    position = fh.tell()
    end = fh.seek(0, os.SEEK_END)
    fh.seek(position)
    return end - position


def _iter_file(fh: IO[bytes], guard_factory: Callable[[], SpeedGuard]) -> Iterator[bytes]:
    # The guard starts when httpx begins pulling the body, and each chunk
    # counts once httpx asks for the next one.
    guard = guard_factory()
    while True:
        chunk = fh.read(_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk
        guard.update(len(chunk))


def _join_headers(headers: httpx.Headers) -> dict[str, str]:
    """Collapse repeated response headers into comma-joined values."""
    joined: dict[str, str] = {}
    for name, value in headers.multi_items():
        if name in joined:
            joined[name] += ", " + value
        else:
            joined[name] = value
    return joined
