"""
Fetch cache: last successful JSON body per request URL.

Entries are keyed by the literal URL (query string and any credentials in it
included). A hit is served while ``now - fetched_at < duration``; anything
else goes to the network. Failures never write or return cached data.
Memory is bounded by LRU eviction on ``max_entries`` and a TTL sweep on
``max_age``.
"""

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from finboard.errors import HttpStatusError, NetworkError, ParseError

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MS = 60 * 1000
BODY_EXCERPT_LENGTH = 100


@dataclass
class CacheEntry:
    payload: Any
    fetched_at: float = field(default_factory=time.time)


class FetchCache:
    """
    Explicit request cache owned by the application root.

    No request coalescing: concurrent callers for the same stale key each
    hit the network and the last response to complete wins.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        max_entries: int = 256,
        default_duration_ms: float = DEFAULT_DURATION_MS,
        max_age: float = 3600.0,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.max_entries = max_entries
        self.default_duration_ms = default_duration_ms
        self.max_age = max_age
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, url: str) -> CacheEntry | None:
        """Raw entry for a URL without touching LRU order."""
        return self._entries.get(url)

    # ── Read ──────────────────────────────────────────

    async def get(
        self,
        url: str,
        duration_ms: float | None = None,
        force_refresh: bool = False,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Resolve ``url`` to a JSON value, from cache when still fresh.

        Raises:
            NetworkError: transport failure.
            HttpStatusError: non-2xx status.
            ParseError: 2xx body that is not JSON.
        """
        if duration_ms is None:
            duration_ms = self.default_duration_ms
        now = self._clock()
        entry = self._entries.get(url)
        if not force_refresh and entry is not None and now - entry.fetched_at < duration_ms / 1000:
            logger.debug(f"Serving from cache: {url}")
            self._entries.move_to_end(url)
            return entry.payload

        payload = await self._fetch(url, headers or {})
        self._store(url, payload, now)
        return payload

    async def _fetch(self, url: str, headers: dict[str, str]) -> Any:
        try:
            response = await self._client.get(url, headers=headers)
        except (httpx.TransportError, httpx.InvalidURL) as e:
            logger.error(f"Fetch error for {url}: {e}")
            raise NetworkError(url, str(e) or e.__class__.__name__) from e

        text = response.text
        if not response.is_success:
            logger.warning(f"HTTP {response.status_code} for {url}")
            raise HttpStatusError(response.status_code, text[:BODY_EXCERPT_LENGTH])

        try:
            return json.loads(text)
        except ValueError as e:
            logger.warning(f"Non-JSON body from {url}")
            raise ParseError() from e

    # ── Write / evict ─────────────────────────────────

    def _store(self, url: str, payload: Any, fetched_at: float):
        self._entries[url] = CacheEntry(payload=payload, fetched_at=fetched_at)
        self._entries.move_to_end(url)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted LRU cache entry: {evicted}")

    def invalidate(self, url: str | None = None) -> int:
        """Drop one entry, or every entry when ``url`` is None."""
        if url is None:
            count = len(self._entries)
            self._entries.clear()
            return count
        return 1 if self._entries.pop(url, None) is not None else 0

    def sweep(self) -> int:
        """Drop entries older than ``max_age`` seconds."""
        now = self._clock()
        expired = [url for url, e in self._entries.items() if now - e.fetched_at >= self.max_age]
        for url in expired:
            del self._entries[url]
        if expired:
            logger.info(f"Cache sweep removed {len(expired)} entries")
        return len(expired)

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
