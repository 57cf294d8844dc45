from __future__ import annotations

from forum_sitemap.sitemap.cache import FeedCache, InMemoryTTLCache
from forum_sitemap.sitemap.generator import FeedGenerator, validate_sitemap_settings
from forum_sitemap.sitemap.pages import PageIndexer, page_count
from forum_sitemap.sitemap.query import TopicQuery
from forum_sitemap.sitemap.render import CONTENT_TYPE, news_language
from forum_sitemap.sitemap.store import SqlCategoryStore, SqlTopicStore
from forum_sitemap.sitemap.types import (
    Category,
    FeatureDisabledError,
    FeedDocument,
    InvalidConfigurationError,
    InvalidPageError,
    PageDescriptor,
    SortOrder,
    StorageUnavailableError,
    Topic,
    TopicFilter,
)

__all__ = [
    "CONTENT_TYPE",
    "Category",
    "FeatureDisabledError",
    "FeedCache",
    "FeedDocument",
    "FeedGenerator",
    "InMemoryTTLCache",
    "InvalidConfigurationError",
    "InvalidPageError",
    "PageDescriptor",
    "PageIndexer",
    "SortOrder",
    "SqlCategoryStore",
    "SqlTopicStore",
    "StorageUnavailableError",
    "Topic",
    "TopicFilter",
    "TopicQuery",
    "news_language",
    "page_count",
    "validate_sitemap_settings",
]
