from __future__ import annotations

from datetime import datetime
from functools import cached_property
from typing import Any, Sequence

from forum_sitemap.sitemap.types import (
    CategoryStore,
    InvalidPageError,
    SortOrder,
    TopicFilter,
    TopicStore,
)


class TopicQuery:
    """Read-only views over the eligible topic set.

    A topic is eligible when it is visible and its category is neither
    read-restricted nor listed in ``skip_categories``. One instance is built
    per request, so the category lookup runs at most once per request.
    """

    def __init__(
        self,
        topics: TopicStore,
        categories: CategoryStore,
        skip_categories: frozenset[str] = frozenset(),
    ) -> None:
        self._topics = topics
        self._categories = categories
        self._skip_categories = skip_categories

    @cached_property
    def category_ids(self) -> frozenset[int]:
        return frozenset(
            self._categories.categories_excluding(restricted=True, skip_slugs=self._skip_categories)
        )

    def _filter(
        self,
        *,
        since: datetime | None = None,
        order: SortOrder | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> TopicFilter:
        if order is None:
            order = SortOrder.DESC if since is not None else SortOrder.ASC
        return TopicFilter(
            category_ids=self.category_ids,
            since=since,
            order=order,
            limit=limit,
            offset=offset,
        )

    def _page_filter(self, index: int, size: int) -> TopicFilter:
        if index < 1:
            raise InvalidPageError(f"Page {index} is not a positive integer")
        return self._filter(limit=size, offset=(index - 1) * size)

    def eligible_topics(
        self,
        since: datetime | None = None,
        order: SortOrder | None = None,
        *,
        limit: int | None = None,
        columns: Sequence[str],
    ) -> list[dict[str, Any]]:
        return self._topics.query_topics(self._filter(since=since, order=order, limit=limit), columns)

    def page(self, index: int, size: int, *, columns: Sequence[str]) -> list[dict[str, Any]]:
        return self._topics.query_topics(self._page_filter(index, size), columns)

    def count_eligible(self) -> int:
        return self._topics.count(self._filter())

    def max_field(
        self,
        field: str,
        *,
        page_index: int | None = None,
        page_size: int | None = None,
    ) -> datetime | None:
        if page_index is None:
            topic_filter = self._filter()
        else:
            if page_size is None:
                raise ValueError("page_size is required with page_index")
            topic_filter = self._page_filter(page_index, page_size)
        return self._topics.max_field(topic_filter, field)
