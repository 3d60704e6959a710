"""Page fetching for the crawl scheduler.

The scheduler only depends on the ``Fetcher`` protocol. ``HttpFetcher`` is
the default aiohttp implementation with retry and exponential backoff.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Union

import aiohttp

from .errors import FetchError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@dataclass
class FetchResult:
    """Raw page returned by a fetcher."""
    url: str
    content: Union[str, bytes]
    content_type: Optional[str] = None
    status_code: int = 200
    final_url: Optional[str] = None
    response_time: Optional[float] = None
    retry_count: int = 0


class Fetcher(Protocol):
    """Turns a URL into raw content. Raises ``FetchError`` on failure."""

    async def fetch(self, url: str) -> FetchResult:
        ...


class HttpFetcher:
    """Asynchronous HTTP fetcher with retries."""

    def __init__(self,
                 request_timeout: float = 30,
                 user_agent: str = "docscope/0.1",
                 max_retries: int = 3,
                 retry_delay: float = 1.0,
                 max_retry_delay: float = 60.0,
                 max_connections: int = 20,
                 follow_redirects: bool = True,
                 headers: Optional[Dict[str, str]] = None):
        """Initialize fetcher.

        Args:
            request_timeout: Total request timeout in seconds
            user_agent: User agent header
            max_retries: Maximum number of retry attempts
            retry_delay: Base delay between retries (seconds)
            max_retry_delay: Maximum delay between retries (seconds)
            max_connections: Connection pool size
            follow_redirects: Whether redirects are followed
            headers: Extra request headers sent with every request
        """
        self.request_timeout = request_timeout
        self.user_agent = user_agent
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.max_connections = max_connections
        self.follow_redirects = follow_redirects
        self.headers = dict(headers or {})
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            connector = aiohttp.TCPConnector(limit=self.max_connections)
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={"User-Agent": self.user_agent, **self.headers},
            )
        return self.session

    async def close(self):
        """Close the underlying session."""
        if self.session:
            await self.session.close()
            self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter."""
        base_delay = self.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.max_retry_delay)

    def _is_retryable_error(self, exception: Optional[Exception], status_code: Optional[int] = None) -> bool:
        if status_code is not None and status_code in RETRYABLE_STATUS_CODES:
            return True
        if isinstance(exception, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
            return True
        if isinstance(exception, aiohttp.ClientError):
            # Connection problems are retried, 4xx responses are not
            return isinstance(exception, (aiohttp.ClientConnectionError,
                                          aiohttp.ServerDisconnectedError))
        return False

    async def fetch(self, url: str) -> FetchResult:
        """Fetch a URL, retrying transient failures.

        Raises:
            FetchError: if the page could not be retrieved
        """
        session = await self._ensure_session()
        start_time = time.time()
        last_exception: Optional[Exception] = None
        last_status: Optional[int] = None

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(f"Fetching {url} (attempt {attempt + 1}/{self.max_retries + 1})")
                async with session.get(url, allow_redirects=self.follow_redirects) as response:
                    last_status = response.status
                    if self._is_retryable_error(None, response.status) and attempt < self.max_retries:
                        delay = self._calculate_retry_delay(attempt)
                        logger.warning(f"Retryable status {response.status} for {url}, "
                                       f"retrying in {delay:.2f}s")
                        await asyncio.sleep(delay)
                        continue

                    if response.status >= 400:
                        raise FetchError(f"HTTP {response.status} fetching {url}",
                                         url=url, status_code=response.status)

                    content = await response.read()
                    return FetchResult(
                        url=url,
                        content=content,
                        content_type=response.headers.get("Content-Type"),
                        status_code=response.status,
                        final_url=str(response.url),
                        response_time=time.time() - start_time,
                        retry_count=attempt,
                    )

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_exception = e
                if attempt < self.max_retries and self._is_retryable_error(e):
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(f"Error fetching {url}: {e!r}, retrying in {delay:.2f}s "
                                   f"(attempt {attempt + 1}/{self.max_retries + 1})")
                    await asyncio.sleep(delay)
                    continue
                break

        if last_exception is not None:
            raise FetchError(f"Failed to fetch {url}: {last_exception!r}", url=url,
                             status_code=last_status, cause=last_exception)
        raise FetchError(f"Failed to fetch {url}: HTTP {last_status}", url=url, status_code=last_status)
