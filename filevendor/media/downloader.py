"""
Handles the streaming download of remote files into temporary files, with
retry logic and per-host circuit breakers.
"""

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

import aiofiles
import aiohttp

from filevendor.exceptions import CacheIOError, FetchFailedError
from filevendor.storage.cache import TEMP_PREFIX, TEMP_SUFFIX
from filevendor.utils.circuit_breaker import CircuitBreaker, CircuitOpenError

log = logging.getLogger(__name__)


@dataclass
class FetchedFile:
    """
    A downloaded payload waiting in a temporary file.

    The handle is consumed exactly once, by the cache install. An unconsumed
    handle should be discarded so the temporary file does not linger.
    """

    path: Path
    size: int
    url: str
    _consumed: bool = field(default=False, repr=False)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> Path:
        """Hands the temporary file over to the caller."""
        if self._consumed:
            raise RuntimeError(f"Fetched payload for '{self.url}' was already used.")
        self._consumed = True
        return self.path

    def discard(self) -> None:
        """Deletes the temporary file if it was never consumed."""
        if not self._consumed:
            self._consumed = True
            self.path.unlink(missing_ok=True)


class Downloader:
    """
    Streams remote files to disk.

    Retries are this class's concern: a failed attempt is retried up to
    `max_attempts` times with exponential backoff, except for client errors
    (4xx other than 408/429) which fail immediately. Whatever goes wrong, the
    caller only ever sees `FetchFailedError`.
    """

    CHUNK_SIZE = 131072  # 128 KB
    RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})

    def __init__(
        self,
        staging_dir: Path | None = None,
        max_attempts: int = 3,
        base_delay: float = 1.5,
        connect_timeout: float = 15.0,
        read_timeout: float = 90.0,
        max_workers: int = 8,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ):
        self.staging_dir = Path(staging_dir or tempfile.gettempdir())
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_workers = max_workers
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._session: aiohttp.ClientSession | None = None
        self._breakers: dict[str, CircuitBreaker] = {}

    async def __aenter__(self) -> "Downloader":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session sized for the worker count."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_workers * 2,
                limit_per_host=self.max_workers,
                ttl_dns_cache=600,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(
                    total=None,
                    sock_connect=self.connect_timeout,
                    sock_read=self.read_timeout,
                ),
            )
            log.debug(f"Created download pool with limit_per_host={self.max_workers}")
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            log.debug("Downloader connection pool closed.")
        self._session = None

    def breaker_for(self, url: str) -> CircuitBreaker:
        """Returns the circuit breaker of the host serving `url`."""
        host = urlsplit(url).netloc or url
        if host not in self._breakers:
            self._breakers[host] = CircuitBreaker(
                name=host,
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
            )
        return self._breakers[host]

    def _new_temp_path(self) -> Path:
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=self.staging_dir
        )
        os.close(fd)
        return Path(temp_name)

    async def _stream_to(self, url: str, destination: Path) -> int:
        session = await self._initialize_session()
        bytes_downloaded = 0
        async with session.get(url, allow_redirects=True) as response:
            response.raise_for_status()
            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                    await f.write(chunk)
                    bytes_downloaded += len(chunk)
        return bytes_downloaded

    async def _fetch_with_retries(self, url: str) -> FetchedFile:
        last_exception: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            temp_path: Path | None = None
            completed = False
            try:
                temp_path = self._new_temp_path()
                size = await self._stream_to(url, temp_path)
                completed = True
                log.debug(f"Fetched {size} bytes from '{url}'")
                return FetchedFile(path=temp_path, size=size, url=url)
            except aiohttp.ClientResponseError as e:
                last_exception = e
                if e.status not in self.RETRYABLE_STATUS:
                    break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
            except OSError as e:
                raise CacheIOError(
                    f"Failed to stage download of '{url}' in {self.staging_dir}: {e}"
                ) from e
            finally:
                if temp_path is not None and not completed:
                    temp_path.unlink(missing_ok=True)

            log.debug(
                f"Fetch attempt {attempt}/{self.max_attempts} for '{url}' "
                f"failed: {last_exception}."
            )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))

        raise FetchFailedError(url, last_exception) from last_exception

    async def fetch(self, url: str) -> FetchedFile:
        """
        Downloads `url` into a temporary file in the staging directory.

        The host's circuit breaker counts the whole call, retries included,
        as one success or one failure. Staging errors are local and are not
        counted against the host.

        Raises:
            FetchFailedError: If every attempt failed, the host's circuit is
                open, or the download was cancelled.
            CacheIOError: If the temporary file could not be created or written.
        """
        breaker = self.breaker_for(url)
        try:
            await breaker.check()
        except CircuitOpenError as e:
            raise FetchFailedError(url, e) from e

        try:
            fetched = await self._fetch_with_retries(url)
        except FetchFailedError:
            await breaker.record_failure()
            raise
        except asyncio.CancelledError as e:
            log.debug(f"Fetch of '{url}' was cancelled.")
            raise FetchFailedError(url, e) from e

        await breaker.record_success()
        return fetched
