from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, Sequence


class FeatureDisabledError(LookupError):
    pass


class InvalidPageError(LookupError):
    pass


class InvalidConfigurationError(ValueError):
    pass


class StorageUnavailableError(RuntimeError):
    pass


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class Topic:
    id: int
    slug: str
    title: str
    category_id: int
    visible: bool
    updated_at: datetime
    created_at: datetime
    last_posted_at: datetime | None = None
    posts_count: int = 0


@dataclass
class Category:
    id: int
    slug: str
    read_restricted: bool = False


@dataclass(frozen=True)
class TopicFilter:
    category_ids: frozenset[int]
    visible_only: bool = True
    since: datetime | None = None
    order: SortOrder = SortOrder.ASC
    limit: int | None = None
    offset: int = 0


@dataclass(frozen=True)
class PageDescriptor:
    index: int
    size: int
    last_modified: datetime

    @property
    def offset(self) -> int:
        return (self.index - 1) * self.size


@dataclass(frozen=True)
class SitemapEntry:
    topic_id: int
    slug: str
    lastmod: datetime
    posts_count: int | None = None


@dataclass(frozen=True)
class NewsEntry:
    topic_id: int
    title: str
    slug: str
    published_at: datetime


@dataclass(frozen=True)
class FeedDocument:
    body: bytes
    content_type: str
    cache_key: str = field(default="")


class TopicStore(Protocol):
    def query_topics(self, topic_filter: TopicFilter, columns: Sequence[str]) -> list[dict[str, Any]]: ...
    def count(self, topic_filter: TopicFilter) -> int: ...
    def max_field(self, topic_filter: TopicFilter, field: str) -> datetime | None: ...


class CategoryStore(Protocol):
    def categories_excluding(self, *, restricted: bool, skip_slugs: frozenset[str]) -> set[int]: ...
