"""
Shared HTTP client for publisher requests.

Async GET with exponential backoff on connection failures and 5xx responses,
immediate surfacing of 429 rate limiting, and chunked streaming to disk.
One client (one connection pool) is shared by every operation of a source.
"""

import asyncio
import logging
import os
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Union

import aiofiles
import aiohttp

from mrf_pipeline.common.exceptions import (
    NetworkError,
    ServerError,
    SizeExceededError,
    StorageError,
    error_for_status,
)
from mrf_pipeline.common.logging.utilities import LoggedClass
from mrf_pipeline.metrics import record_http_request, record_http_retry

# Read size for streamed downloads
CHUNK_SIZE = 8 * 1024 * 1024  # 8MB

DEFAULT_RETRY_AFTER = 60
DEFAULT_TIMEOUT_SECS = 300
DEFAULT_MAX_RETRIES = 3

ProgressCallback = Callable[[int, int], None]


def parse_retry_after(value: Optional[str], default: int = DEFAULT_RETRY_AFTER) -> int:
    """Parse a Retry-After header given in seconds. HTTP-date values use the default."""
    if not value:
        return default
    try:
        seconds = int(value.strip())
    except ValueError:
        return default
    return seconds if seconds >= 0 else default


def backoff_seconds(attempt: int) -> int:
    """Exponential backoff: 2, 4, 8, ... for attempts 1, 2, 3, ..."""
    return 2**attempt


def temp_path_for(destination: Path) -> Path:
    """
    Reserve a unique "<name>.<random>.part" file beside destination.

    Concurrent writers of the same destination each get their own file.
    """
    fd, name = tempfile.mkstemp(
        dir=destination.parent, prefix=f"{destination.name}.", suffix=".part"
    )
    os.close(fd)
    return Path(name)


def check_size(
    content_length: Optional[int], max_size: Optional[int], url: str
) -> None:
    """Raise SizeExceededError when the advertised length is over the limit."""
    if max_size is not None and content_length is not None and content_length > max_size:
        raise SizeExceededError(
            content_length, max_size, context={"url": url}
        )


class RequestClient(LoggedClass):
    """
    HTTP client with retry, rate-limit detection and streaming downloads.

    Retries connection failures and 5xx responses with 2**attempt second
    backoff up to max_retries. A 429 raises RateLimitedError on the first
    attempt carrying the publisher's Retry-After. Other non-2xx statuses
    raise without retry.

    Usage:
        async with RequestClient(user_agent="mrf-pipeline/0.1.0") as client:
            body = await client.get_bytes(url, max_size=10_000_000)
            written = await client.download(url, Path("out/file.json.gz"))
    """

    log_component = "http"

    def __init__(
        self,
        user_agent: Optional[str] = None,
        max_connections: int = 100,
        rate_limit: Optional[float] = None,
        timeout_secs: int = DEFAULT_TIMEOUT_SECS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        verify_ssl: bool = True,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize RequestClient.

        Args:
            user_agent: User-Agent header sent with every request
            max_connections: Connection pool ceiling (default: 100)
            rate_limit: Max request starts per second (None = unthrottled)
            timeout_secs: Default total timeout per request
            max_retries: Default retries for connection failures and 5xx
            verify_ssl: Default TLS certificate verification
            session: Externally owned session (not closed by this client)
        """
        self.user_agent = user_agent
        self.max_connections = max_connections
        self.rate_limit = rate_limit
        self.timeout_secs = timeout_secs
        self.max_retries = max_retries
        self.verify_ssl = verify_ssl

        self._session = session
        self._owns_session = session is None
        self._throttle_lock: Optional[asyncio.Lock] = None
        self._next_request_at = 0.0

        super().__init__()

    async def __aenter__(self) -> "RequestClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Create the shared session if it does not exist."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections,
                keepalive_timeout=90,
            )
            headers = {"User-Agent": self.user_agent} if self.user_agent else None
            self._session = aiohttp.ClientSession(connector=connector, headers=headers)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _throttle(self) -> None:
        """Space request starts at least 1/rate_limit seconds apart."""
        if not self.rate_limit:
            return
        if self._throttle_lock is None:
            self._throttle_lock = asyncio.Lock()

        interval = 1.0 / self.rate_limit
        async with self._throttle_lock:
            now = time.monotonic()
            wait = self._next_request_at - now
            if wait > 0:
                await asyncio.sleep(wait)
                now = time.monotonic()
            self._next_request_at = now + interval

    async def _backoff(self, url: str, attempt: int, max_retries: int, reason: str) -> None:
        delay = backoff_seconds(attempt)
        record_http_retry(reason)
        self._log(
            logging.WARNING,
            f"Retrying request (attempt {attempt}/{max_retries})",
            url=url,
            attempt=attempt,
            max_retries=max_retries,
            backoff_seconds=delay,
            error_category="transient",
        )
        await asyncio.sleep(delay)

    async def _send(
        self,
        url: str,
        max_retries: int,
        timeout_secs: int,
        verify_ssl: bool,
    ) -> aiohttp.ClientResponse:
        """Issue GET until a 2xx response or a non-retryable outcome."""
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=timeout_secs)
        ssl = None if verify_ssl else False

        attempt = 0
        while True:
            await self._throttle()
            self._log(logging.DEBUG, f"HTTP GET attempt {attempt + 1}", url=url)
            start = time.perf_counter()

            try:
                response = await session.get(url, timeout=timeout, ssl=ssl)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                record_http_request()
                if attempt < max_retries:
                    attempt += 1
                    await self._backoff(url, attempt, max_retries, "network")
                    continue
                raise NetworkError(
                    f"Request failed after {attempt + 1} attempt(s): {url}",
                    cause=e,
                    context={"url": url, "attempt": attempt + 1},
                ) from e

            status = response.status
            record_http_request(status, time.perf_counter() - start)

            if 200 <= status < 300:
                return response

            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            response.release()

            if status >= 500 and attempt < max_retries:
                attempt += 1
                await self._backoff(url, attempt, max_retries, "server_error")
                continue

            error = error_for_status(status, url, retry_after=retry_after)
            self._log(
                logging.WARNING,
                "HTTP request failed",
                url=url,
                http_status=status,
                attempt=attempt + 1,
                retry_after=retry_after if status == 429 else None,
                error_category=error.category.value,
            )
            raise error

    @asynccontextmanager
    async def request(
        self,
        url: str,
        max_retries: Optional[int] = None,
        timeout_secs: Optional[int] = None,
        verify_ssl: Optional[bool] = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """
        GET a URL and yield the successful response.

        The response is released when the context exits.

        Raises:
            RateLimitedError: Publisher answered 429 (not retried)
            ServerError: 5xx persisted through all retries
            HttpClientError: Other 4xx
            HttpError: Any other non-2xx
            NetworkError: Connection failures persisted through all retries
        """
        response = await self._send(
            url,
            self.max_retries if max_retries is None else max_retries,
            self.timeout_secs if timeout_secs is None else timeout_secs,
            self.verify_ssl if verify_ssl is None else verify_ssl,
        )
        try:
            yield response
        finally:
            response.release()

    async def get_bytes(
        self,
        url: str,
        max_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        timeout_secs: Optional[int] = None,
        verify_ssl: Optional[bool] = None,
    ) -> bytes:
        """
        GET a URL and read the whole body into memory.

        Raises:
            SizeExceededError: Content-Length over max_size (body not read)
            NetworkError: Body transfer failed
        """
        async with self.request(
            url,
            max_retries=max_retries,
            timeout_secs=timeout_secs,
            verify_ssl=verify_ssl,
        ) as response:
            check_size(response.content_length, max_size, url)
            try:
                return await response.read()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise NetworkError(
                    f"Failed reading response body: {url}",
                    cause=e,
                    context={"url": url},
                ) from e

    async def download(
        self,
        url: str,
        destination: Union[str, Path],
        on_progress: Optional[ProgressCallback] = None,
        max_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        timeout_secs: Optional[int] = None,
        verify_ssl: Optional[bool] = None,
    ) -> int:
        """
        Stream a URL to disk in chunks.

        Bytes go to a unique "<destination>.<random>.part" file in receive
        order and are renamed onto destination only after a complete flush. On failure the partial
        file is removed and any existing destination is left untouched.

        Args:
            url: URL to download
            destination: Target file path (parents are created)
            on_progress: Called with (bytes_so_far, total) when Content-Length is known
            max_size: Reject before reading when Content-Length exceeds this

        Returns:
            Number of bytes written

        Raises:
            SizeExceededError: Content-Length over max_size
            NetworkError: Body transfer failed
            StorageError: Local write failed
        """
        destination = Path(destination)

        try:
            await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create directory {destination.parent}: {e}",
                cause=e,
                context={"path": str(destination.parent)},
            ) from e

        async with self.request(
            url,
            max_retries=max_retries,
            timeout_secs=timeout_secs,
            verify_ssl=verify_ssl,
        ) as response:
            total = response.content_length
            check_size(total, max_size, url)

            written = 0
            completed = False
            part_path: Optional[Path] = None
            try:
                part_path = await asyncio.to_thread(temp_path_for, destination)
                async with aiofiles.open(part_path, "wb") as f:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        await f.write(chunk)
                        written += len(chunk)
                        if on_progress is not None and total is not None:
                            on_progress(written, total)
                    await f.flush()
                await asyncio.to_thread(os.replace, part_path, destination)
                completed = True
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise NetworkError(
                    f"Download interrupted after {written} bytes: {url}",
                    cause=e,
                    context={"url": url, "bytes_downloaded": written},
                ) from e
            except OSError as e:
                raise StorageError(
                    f"Failed writing {destination}: {e}",
                    cause=e,
                    context={"path": str(destination)},
                ) from e
            finally:
                if not completed and part_path is not None and part_path.exists():
                    part_path.unlink()

        self._log(
            logging.DEBUG,
            "Download complete",
            url=url,
            path=str(destination),
            bytes_downloaded=written,
            content_length=total,
        )
        return written


__all__ = [
    "CHUNK_SIZE",
    "RequestClient",
    "backoff_seconds",
    "check_size",
    "parse_retry_after",
    "temp_path_for",
]
