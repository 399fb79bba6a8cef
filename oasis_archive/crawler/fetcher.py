"""
Origin fetcher with an LRU response cache and retry/backoff.
"""

import asyncio
import aiohttp
import logging
import time
from collections import OrderedDict
from typing import Optional, Dict, Tuple, Union
from dataclasses import dataclass, field
from aiohttp import ClientSession, ClientTimeout, ClientError
from yarl import URL

from .urls import OriginRef


# Status codes worth another attempt
TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class FetchError(Exception):
    """Non-transient failure: the resource is unavailable."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Failure that may succeed on retry (timeouts, resets, 429/5xx)."""
    pass


@dataclass
class FetchResult:
    """Result of a successful fetch."""
    reference: str
    status_code: int
    body: bytes = b''
    headers: Dict[str, str] = field(default_factory=dict)
    content_type: Optional[str] = None
    fetch_time: float = 0.0

    @property
    def mime_type(self) -> Optional[str]:
        """Media type without parameters, lower-cased."""
        if not self.content_type:
            return None
        mime_type = self.content_type.split(';', 1)[0].strip().lower()
        return mime_type or None

    @property
    def charset(self) -> str:
        if self.content_type:
            for param in self.content_type.split(';')[1:]:
                name, _, value = param.partition('=')
                if name.strip().lower() == 'charset' and value.strip():
                    return value.strip().strip('"')
        return 'utf-8'

    @property
    def text(self) -> str:
        try:
            return self.body.decode(self.charset)
        except (LookupError, UnicodeDecodeError):
            return self.body.decode('utf-8', errors='replace')


_MISSING = object()


class FetchCache:
    """
    Bounded response cache with least-recently-used eviction.

    Stores ``None`` for references known to be unavailable so they are
    never requested again while cached.
    """

    def __init__(self, capacity: int = 1024):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[str, Optional[FetchResult]]" = OrderedDict()
        self.stats = {'hits': 0, 'misses': 0, 'evictions': 0}

    def lookup(self, key: str) -> Tuple[bool, Optional[FetchResult]]:
        """Return ``(hit, value)``; a hit may carry a ``None`` sentinel."""
        value = self._entries.get(key, _MISSING)
        if value is _MISSING:
            self.stats['misses'] += 1
            return False, None
        self._entries.move_to_end(key)
        self.stats['hits'] += 1
        return True, value

    def store(self, key: str, value: Optional[FetchResult]):
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
            self.stats['evictions'] += 1

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class OriginFetcher:
    """
    Fetches references from the origin through a shared cache.

    Concurrent requests for the same reference share one in-flight
    request, so each normalized reference hits the network at most once
    while its cache entry survives.
    """

    def __init__(self, base_url: str, cache: Optional[FetchCache] = None,
                 user_agent: str = "oasis-archive/1.0", request_timeout: int = 30,
                 max_concurrent_requests: int = 16, retry_attempts: int = 3,
                 backoff_base: float = 0.5, backoff_max: float = 8.0):
        self.base_url = base_url.rstrip('/')
        self.cache = cache if cache is not None else FetchCache()
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.retry_attempts = retry_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

        self.logger = logging.getLogger(__name__)

        self.session: Optional[ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent_requests)
        self._in_flight: Dict[str, asyncio.Task] = {}

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'retries': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the HTTP session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(limit=self.max_concurrent_requests * 2)
            )
            self.logger.info(f"Fetcher session started for {self.base_url}")

    async def close(self):
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("Fetcher session closed")

    async def fetch(self, reference: Union[str, OriginRef]) -> Optional[FetchResult]:
        """
        Fetch a reference, consulting the cache first.

        Args:
            reference: Origin-relative reference; its fragment is ignored

        Returns:
            FetchResult, or None if the resource is unavailable
        """
        ref = reference if isinstance(reference, OriginRef) else OriginRef.parse(reference)
        if ref is None:
            return None

        key = ref.key
        hit, cached = self.cache.lookup(key)
        if hit:
            return cached

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(ref.without_fragment()))
            self._in_flight[key] = task
            task.add_done_callback(lambda _t, key=key: self._in_flight.pop(key, None))

        return await asyncio.shield(task)

    async def _fetch_and_store(self, ref: OriginRef) -> Optional[FetchResult]:
        try:
            result = await self._fetch_with_retry(ref)
        except FetchError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Unavailable {ref.key}: {e}")
            result = None

        self.cache.store(ref.key, result)
        return result

    async def _fetch_with_retry(self, ref: OriginRef) -> FetchResult:
        attempt = 0
        while True:
            try:
                return await self._request(ref)
            except TransientFetchError as e:
                if attempt >= self.retry_attempts:
                    raise
                delay = self._backoff_delay(attempt)
                attempt += 1
                self.stats['retries'] += 1
                self.logger.info(
                    f"Transient failure for {ref.key} ({e}); "
                    f"retry {attempt}/{self.retry_attempts} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

    def _backoff_delay(self, attempt: int) -> float:
        """Capped exponential backoff: base * 2^attempt, at most backoff_max."""
        return min(self.backoff_max, self.backoff_base * (2 ** attempt))

    async def _request(self, ref: OriginRef) -> FetchResult:
        """Issue one GET against the origin; raises FetchError on failure."""
        if self.session is None:
            await self.start()

        start_time = time.time()
        url = URL(self.base_url + ref.request_target, encoded=True)

        async with self.semaphore:
            self.stats['total_requests'] += 1
            try:
                async with self.session.get(url) as response:
                    if response.status in TRANSIENT_STATUS_CODES:
                        raise TransientFetchError(f"HTTP {response.status}", response.status)
                    if not 200 <= response.status < 300:
                        raise FetchError(f"HTTP {response.status}", response.status)

                    body = await response.read()
                    result = FetchResult(
                        reference=ref.key,
                        status_code=response.status,
                        body=body,
                        headers=dict(response.headers),
                        content_type=response.headers.get('Content-Type'),
                        fetch_time=time.time() - start_time
                    )
            except asyncio.TimeoutError:
                raise TransientFetchError("Request timeout")
            except ClientError as e:
                raise TransientFetchError(f"Client error: {e}")

        self.stats['successful_requests'] += 1
        self.stats['total_bytes_downloaded'] += len(result.body)
        self.logger.debug(f"Fetched {ref.key}: {result.status_code} ({len(result.body)} bytes)")
        return result

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        stats = self.stats.copy()
        stats.update({f"cache_{name}": value for name, value in self.cache.stats.items()})
        return stats
