from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

from forum_sitemap.sitemap.query import TopicQuery
from forum_sitemap.sitemap.types import InvalidConfigurationError, PageDescriptor


EMPTY_LASTMOD_AGE = timedelta(days=3)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def page_count(total_eligible: int, page_size: int) -> int:
    if page_size <= 0:
        raise InvalidConfigurationError(f"Page size must be > 0, got {page_size}")
    pages, remainder = divmod(max(total_eligible, 0), page_size)
    if remainder:
        pages += 1
    return pages


class PageIndexer:
    def __init__(
        self,
        query: TopicQuery,
        page_size: int,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if page_size <= 0:
            raise InvalidConfigurationError(f"Page size must be > 0, got {page_size}")
        self._query = query
        self._page_size = page_size
        self._clock = clock

    @property
    def page_size(self) -> int:
        return self._page_size

    def page_count(self, total_eligible: int) -> int:
        return page_count(total_eligible, self._page_size)

    def last_modified_for(self, page_index: int | None = None) -> datetime:
        """Latest activity on one page, or on the whole eligible set.

        Falls back to the latest ``updated_at`` when nothing has a post
        timestamp, and to three days ago when the set is empty.
        """
        bounds = {"page_index": page_index, "page_size": self._page_size} if page_index is not None else {}
        return (
            self._query.max_field("last_posted_at", **bounds)
            or self._query.max_field("updated_at", **bounds)
            or self._clock() - EMPTY_LASTMOD_AGE
        )

    def describe(self, page_index: int) -> PageDescriptor:
        return PageDescriptor(
            index=page_index,
            size=self._page_size,
            last_modified=self.last_modified_for(page_index),
        )
