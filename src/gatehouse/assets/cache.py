"""TTL cache for assets proxied from a fixed table of remote mirrors.

Entries are keyed by the inbound request path and expire lazily: an entry
older than the TTL is evicted the next time it is looked up, never by a
background sweep. Concurrent misses for the same path may each fetch from the
mirror; the last one to finish wins the slot.

Example:
    cache = AssetCache({"/e/2/": "https://mirror.example/assets/"})

    asset = await cache.fetch_asset("/e/2/logo.png")
    if asset is None:
        ...  # not ours, let the next handler try
    else:
        return web.Response(body=asset.payload, content_type=asset.content_type)
"""

from __future__ import annotations

import asyncio
import mimetypes
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import urlsplit

import httpx
import structlog

from gatehouse.core.config import THIRTY_DAYS
from gatehouse.core.exceptions import UpstreamUnavailable
from gatehouse.observability.metrics import ASSET_CACHE_EVENTS, UPSTREAM_FETCH_DURATION

logger = structlog.get_logger()

OPAQUE_BINARY = "application/octet-stream"

# Types the platform MIME table is known to miss.
EXTRA_TYPES: dict[str, str] = {
    ".wasm": "application/wasm",
    ".data": OPAQUE_BINARY,
}


def guess_content_type(url: str, forced_binary: Iterable[str] = (".unityweb",)) -> str:
    """Content type for ``url`` from its file extension.

    Extensions in ``forced_binary`` always map to the opaque binary type,
    whatever the MIME table says. Unknown extensions fall back to it too.
    """
    ext = PurePosixPath(urlsplit(url).path).suffix.lower()
    if ext in {e.lower() for e in forced_binary}:
        return OPAQUE_BINARY
    if ext in EXTRA_TYPES:
        return EXTRA_TYPES[ext]
    guessed, _ = mimetypes.guess_type(f"asset{ext}", strict=False)
    return guessed or OPAQUE_BINARY


@dataclass(frozen=True)
class CachedAsset:
    """Cached upstream payload."""

    payload: bytes
    content_type: str
    created_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.created_at < ttl


class MirrorTable:
    """Ordered prefix -> upstream base URL table. First matching prefix wins."""

    def __init__(self, mirrors: Mapping[str, str]) -> None:
        self._mirrors: tuple[tuple[str, str], ...] = tuple(mirrors.items())

    @property
    def prefixes(self) -> list[str]:
        return [prefix for prefix, _ in self._mirrors]

    def match_prefix(self, path: str) -> str | None:
        for prefix, _ in self._mirrors:
            if path.startswith(prefix):
                return prefix
        return None

    def resolve(self, path: str) -> str | None:
        """Upstream URL for ``path``, or None if no prefix matches."""
        for prefix, base_url in self._mirrors:
            if path.startswith(prefix):
                return base_url + path[len(prefix) :]
        return None

    def __len__(self) -> int:
        return len(self._mirrors)


class AssetStore:
    """Thread-safe path -> CachedAsset mapping with lazy expiry."""

    def __init__(self, ttl: float = THIRTY_DAYS, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CachedAsset] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> CachedAsset | None:
        """Live entry for ``key``; an expired entry is evicted and reported as absent."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if not entry.is_fresh(self._clock(), self.ttl):
                del self._entries[key]
                self.evictions += 1
                self.misses += 1
                ASSET_CACHE_EVENTS.labels(result="evict").inc()
                logger.debug("Asset cache entry expired", path=key)
                return None
            self.hits += 1
            return entry

    def put(self, key: str, payload: bytes, content_type: str) -> CachedAsset:
        entry = CachedAsset(payload=payload, content_type=content_type, created_at=self._clock())
        with self._lock:
            self._entries[key] = entry
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class AssetCache:
    """Asset proxy: TTL store in front of the mirror table."""

    def __init__(
        self,
        mirrors: Mapping[str, str] | MirrorTable,
        ttl: float = THIRTY_DAYS,
        fetch_timeout: float | None = 30.0,
        forced_binary_extensions: Iterable[str] = (".unityweb",),
        client: httpx.AsyncClient | None = None,
        store: AssetStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.mirrors = mirrors if isinstance(mirrors, MirrorTable) else MirrorTable(mirrors)
        self.fetch_timeout = fetch_timeout
        self.forced_binary_extensions = tuple(e.lower() for e in forced_binary_extensions)
        self.store = store if store is not None else AssetStore(ttl=ttl, clock=clock)
        self._client = client
        self._owns_client = client is None

    def claims(self, path: str) -> bool:
        """Whether ``path`` falls under a mirror prefix."""
        return self.mirrors.match_prefix(path) is not None

    def _create_http_client(self) -> httpx.AsyncClient:
        limits = httpx.Limits(max_connections=100, max_keepalive_connections=20)
        # The overall deadline is enforced around each fetch, not per phase.
        return httpx.AsyncClient(timeout=None, limits=limits, follow_redirects=True)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _fetch_upstream(self, url: str) -> httpx.Response:
        if self._client is None:
            self._client = self._create_http_client()
        request = self._client.get(url)
        if self.fetch_timeout:
            return await asyncio.wait_for(request, timeout=self.fetch_timeout)
        return await request

    async def fetch_asset(self, path: str) -> CachedAsset | None:
        """Serve ``path`` from cache or its mirror.

        Returns:
            The cached asset, or None when no mirror claims the path or the
            mirror answered with a non-success status

        Raises:
            UpstreamUnavailable: On transport failure or deadline expiry
        """
        cached = self.store.get(path)
        if cached is not None:
            ASSET_CACHE_EVENTS.labels(result="hit").inc()
            return cached

        url = self.mirrors.resolve(path)
        if url is None:
            return None

        ASSET_CACHE_EVENTS.labels(result="miss").inc()
        started = time.monotonic()
        try:
            response = await self._fetch_upstream(url)
        except TimeoutError as e:
            ASSET_CACHE_EVENTS.labels(result="upstream_error").inc()
            raise UpstreamUnavailable(
                f"Timed out after {self.fetch_timeout}s fetching {url}", url
            ) from e
        except httpx.HTTPError as e:
            ASSET_CACHE_EVENTS.labels(result="upstream_error").inc()
            raise UpstreamUnavailable(f"Error fetching {url}: {e}", url) from e
        finally:
            UPSTREAM_FETCH_DURATION.observe(time.monotonic() - started)

        if not response.is_success:
            ASSET_CACHE_EVENTS.labels(result="not_found").inc()
            logger.debug("Mirror declined asset", path=path, url=url, status=response.status_code)
            return None

        content_type = guess_content_type(url, self.forced_binary_extensions)
        entry = self.store.put(path, response.content, content_type)
        logger.debug("Asset cached", path=path, url=url, size=len(entry.payload))
        return entry

    def stats(self) -> dict[str, int]:
        return self.store.stats()

    def clear(self) -> None:
        self.store.clear()
