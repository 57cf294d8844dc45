from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from forum_sitemap.config import (
    SITEMAP_INDEX_TTL_S,
    SITEMAP_NEWS_TTL_S,
    SITEMAP_PAGE_TTL_S,
    SITEMAP_RECENT_TTL_S,
    SitemapSettings,
    get_sitemap_settings,
)
from forum_sitemap.db import query_variant
from forum_sitemap.sitemap.cache import (
    NEWS_CACHE_KEY,
    FeedCache,
    index_cache_key,
    page_cache_key,
    recent_cache_key,
)
from forum_sitemap.sitemap.pages import PageIndexer, utcnow
from forum_sitemap.sitemap.query import TopicQuery
from forum_sitemap.sitemap.render import (
    CONTENT_TYPE,
    news_language,
    render_index,
    render_news,
    render_urlset,
)
from forum_sitemap.sitemap.types import (
    CategoryStore,
    FeatureDisabledError,
    FeedDocument,
    InvalidConfigurationError,
    InvalidPageError,
    NewsEntry,
    SitemapEntry,
    TopicStore,
)


logger = logging.getLogger("sitemap")

RECENT_WINDOW = timedelta(days=3)
NEWS_WINDOW = timedelta(hours=72)
PAGE_COLUMNS = ("id", "slug", "last_posted_at", "updated_at")
RECENT_COLUMNS = ("id", "slug", "last_posted_at", "updated_at", "posts_count")
NEWS_COLUMNS = ("id", "title", "slug", "created_at")


def validate_sitemap_settings(settings: SitemapSettings) -> SitemapSettings:
    if settings.topics_per_page <= 0:
        raise InvalidConfigurationError("SITEMAP_TOPICS_PER_PAGE must be > 0")
    if settings.posts_per_page <= 0:
        raise InvalidConfigurationError("SITEMAP_POSTS_PER_PAGE must be > 0")
    return settings


def _sitemap_entry(row: dict[str, Any]) -> SitemapEntry:
    return SitemapEntry(
        topic_id=row["id"],
        slug=row["slug"],
        lastmod=row["last_posted_at"] or row["updated_at"],
        posts_count=row.get("posts_count"),
    )


class FeedGenerator:
    """Builds and caches the four sitemap variants.

    Each operation checks the feature flag before touching the stores or the
    cache. Settings are re-read per call, so a page size change moves every
    variant to fresh cache keys.
    """

    def __init__(
        self,
        topics: TopicStore,
        categories: CategoryStore,
        cache: FeedCache,
        *,
        settings_provider: Callable[[], SitemapSettings] = get_sitemap_settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._topics = topics
        self._categories = categories
        self._cache = cache
        self._settings_provider = settings_provider
        self._clock = clock

    def _begin(self) -> tuple[SitemapSettings, TopicQuery, PageIndexer]:
        settings = self._settings_provider()
        if not settings.enabled:
            raise FeatureDisabledError("Sitemap is disabled")
        validate_sitemap_settings(settings)
        query = TopicQuery(self._topics, self._categories, settings.skip_categories)
        indexer = PageIndexer(query, settings.topics_per_page, clock=self._clock)
        return settings, query, indexer

    def _serve(
        self,
        variant: str,
        key: str,
        ttl_s: float,
        compute: Callable[[], FeedDocument],
    ) -> FeedDocument:
        with query_variant(variant):
            return self._cache.get_or_compute(key, ttl_s, compute)

    def index(self) -> FeedDocument:
        settings, query, indexer = self._begin()
        key = index_cache_key(settings.topics_per_page)

        def compute() -> FeedDocument:
            pages = indexer.page_count(query.count_eligible())
            descriptors = [indexer.describe(page) for page in range(1, pages + 1)]
            # Page boundaries move with the count; drop pages cut with the old one.
            self._cache.invalidate_range(
                page_cache_key(page, settings.topics_per_page) for page in range(1, pages + 1)
            )
            recent_lastmod = indexer.last_modified_for(None)
            logger.info("sitemap_index_computed", extra={"variant": "index", "page_count": pages})
            return FeedDocument(
                body=render_index(
                    settings.base_url,
                    recent_lastmod=recent_lastmod,
                    pages=descriptors,
                ),
                content_type=CONTENT_TYPE,
                cache_key=key,
            )

        return self._serve("index", key, SITEMAP_INDEX_TTL_S, compute)

    def page(self, page: int) -> FeedDocument:
        settings, query, _ = self._begin()
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise InvalidPageError(f"Page {page!r} is not a positive integer")
        key = page_cache_key(page, settings.topics_per_page)

        def compute() -> FeedDocument:
            rows = query.page(page, settings.topics_per_page, columns=PAGE_COLUMNS)
            if not rows:
                raise InvalidPageError(f"Page {page} has no topics")
            logger.info(
                "sitemap_page_computed",
                extra={"variant": "page", "page": page, "topic_count": len(rows)},
            )
            return FeedDocument(
                body=render_urlset(settings.base_url, [_sitemap_entry(row) for row in rows]),
                content_type=CONTENT_TYPE,
                cache_key=key,
            )

        return self._serve("page", key, SITEMAP_PAGE_TTL_S, compute)

    def recent(self) -> FeedDocument:
        settings, query, indexer = self._begin()
        with query_variant("recent"):
            key = recent_cache_key(int(indexer.last_modified_for(None).timestamp()))

        def compute() -> FeedDocument:
            rows = query.eligible_topics(
                since=self._clock() - RECENT_WINDOW,
                limit=settings.topics_per_page,
                columns=RECENT_COLUMNS,
            )
            logger.info("sitemap_recent_computed", extra={"variant": "recent", "topic_count": len(rows)})
            return FeedDocument(
                body=render_urlset(
                    settings.base_url,
                    [_sitemap_entry(row) for row in rows],
                    posts_per_page=settings.posts_per_page,
                ),
                content_type=CONTENT_TYPE,
                cache_key=key,
            )

        return self._serve("recent", key, SITEMAP_RECENT_TTL_S, compute)

    def news(self) -> FeedDocument:
        settings, query, _ = self._begin()

        def compute() -> FeedDocument:
            rows = query.eligible_topics(since=self._clock() - NEWS_WINDOW, columns=NEWS_COLUMNS)
            entries = [
                NewsEntry(
                    topic_id=row["id"],
                    title=row["title"],
                    slug=row["slug"],
                    published_at=row["created_at"],
                )
                for row in rows
            ]
            logger.info("sitemap_news_computed", extra={"variant": "news", "topic_count": len(entries)})
            return FeedDocument(
                body=render_news(
                    settings.base_url,
                    entries,
                    site_title=settings.site_title,
                    language=news_language(settings.default_locale),
                ),
                content_type=CONTENT_TYPE,
                cache_key=NEWS_CACHE_KEY,
            )

        return self._serve("news", NEWS_CACHE_KEY, SITEMAP_NEWS_TTL_S, compute)
