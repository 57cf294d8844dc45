from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from forum_sitemap.sitemap.types import FeedDocument


logger = logging.getLogger("sitemap.cache")

SCHEMA_VERSION = 1
NEWS_CACHE_KEY = "news"


def index_cache_key(page_size: int) -> str:
    return f"index:v{SCHEMA_VERSION}:{page_size}"


def page_cache_key(page: int, page_size: int) -> str:
    return f"page:{page}:{page_size}"


def recent_cache_key(effective_now: int) -> str:
    return f"recent:{effective_now}"


@dataclass(frozen=True)
class FeedCacheEntry:
    key: str
    expires_at: float
    document: FeedDocument


class InMemoryTTLCache:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: dict[str, FeedCacheEntry] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str) -> FeedCacheEntry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return entry

    def set(self, key: str, entry: FeedCacheEntry) -> None:
        self._data[key] = entry

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._data.items() if entry.expires_at <= now]
        for key in expired:
            del self._data[key]
        return len(expired)


class FeedCache:
    """Rendered feed documents keyed by variant, expiring on TTL only.

    There is no lock around ``get_or_compute``: two requests missing the same
    key may both compute, and the last write wins. ``compute`` must therefore
    be a pure read-and-render function.

    Keys that are never read again (superseded ``recent:*`` timestamps, pages
    under an old page size) are swept on the next store once their TTL passes.
    """

    def __init__(
        self,
        store: InMemoryTTLCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store if store is not None else InMemoryTTLCache(clock)
        self._clock = clock

    def get_or_compute(
        self,
        key: str,
        ttl_s: float,
        compute: Callable[[], FeedDocument],
    ) -> FeedDocument:
        entry = self._store.get(key)
        if entry is not None:
            logger.debug("feed_cache_hit", extra={"cache_key": key})
            return entry.document

        document = compute()
        swept = self._store.purge_expired()
        self._store.set(
            key,
            FeedCacheEntry(key=key, expires_at=self._clock() + ttl_s, document=document),
        )
        logger.info(
            "feed_cache_store",
            extra={"cache_key": key, "ttl_s": ttl_s, "swept": swept, "cache_size": len(self._store)},
        )
        return document

    def invalidate(self, key: str) -> None:
        self._store.delete(key)

    def invalidate_range(self, keys: Iterable[str]) -> None:
        count = 0
        for key in keys:
            self._store.delete(key)
            count += 1
        if count:
            logger.info("feed_cache_invalidated", extra={"invalidated": count})


_CACHE = FeedCache()
