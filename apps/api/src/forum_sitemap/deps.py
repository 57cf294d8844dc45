from __future__ import annotations

from forum_sitemap.sitemap import FeedGenerator, SqlCategoryStore, SqlTopicStore
from forum_sitemap.sitemap.cache import _CACHE

_GENERATOR: FeedGenerator | None = None


def get_feed_generator() -> FeedGenerator:
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = FeedGenerator(SqlTopicStore(), SqlCategoryStore(), _CACHE)
    return _GENERATOR
