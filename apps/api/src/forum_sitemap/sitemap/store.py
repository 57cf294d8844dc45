from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError

from forum_sitemap.db import get_engine
from forum_sitemap.sitemap.types import SortOrder, StorageUnavailableError, TopicFilter


TOPIC_COLUMNS = (
    "id",
    "slug",
    "title",
    "category_id",
    "visible",
    "last_posted_at",
    "updated_at",
    "created_at",
    "posts_count",
)
TIMESTAMP_COLUMNS = ("last_posted_at", "updated_at", "created_at")

_ORDER_BY = {
    SortOrder.ASC: "ORDER BY t.last_posted_at ASC NULLS LAST, t.id ASC",
    SortOrder.DESC: "ORDER BY t.last_posted_at DESC NULLS LAST, t.id DESC",
}


def _check_columns(columns: Sequence[str], allowed: Sequence[str]) -> None:
    unknown = [column for column in columns if column not in allowed]
    if unknown:
        raise ValueError(f"Unknown topic columns: {', '.join(unknown)}")


def _selection(topic_filter: TopicFilter, columns: Sequence[str]) -> tuple[str, dict[str, Any]]:
    """Build the filtered, ordered, paginated topic selection.

    Only whitelisted column names are interpolated; every value goes through
    bound parameters.
    """
    clauses = ["t.category_id = ANY(CAST(:category_ids AS bigint[]))"]
    params: dict[str, Any] = {"category_ids": sorted(topic_filter.category_ids)}
    if topic_filter.visible_only:
        clauses.append("t.visible IS TRUE")
    if topic_filter.since is not None:
        clauses.append("t.last_posted_at > :since")
        params["since"] = topic_filter.since

    sql = (
        f"SELECT {', '.join(f't.{column}' for column in columns)} "
        f"FROM topics t WHERE {' AND '.join(clauses)} "
        f"{_ORDER_BY[topic_filter.order]}"
    )
    if topic_filter.limit is not None:
        sql += " LIMIT :limit"
        params["limit"] = topic_filter.limit
    if topic_filter.offset:
        sql += " OFFSET :offset"
        params["offset"] = topic_filter.offset
    return sql, params


class SqlTopicStore:
    def __init__(self, engine_factory: Callable[[], Engine] = get_engine) -> None:
        self._engine_factory = engine_factory

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            with self._engine_factory().begin() as conn:
                yield conn
        except DBAPIError as exc:
            raise StorageUnavailableError(f"Topic store unavailable: {exc.orig!r}") from exc

    def query_topics(self, topic_filter: TopicFilter, columns: Sequence[str]) -> list[dict[str, Any]]:
        _check_columns(columns, TOPIC_COLUMNS)
        if not topic_filter.category_ids:
            return []
        sql, params = _selection(topic_filter, columns)
        with self._connect() as conn:
            rows = conn.execute(text(sql), params).mappings().all()
        return [dict(row) for row in rows]

    def count(self, topic_filter: TopicFilter) -> int:
        if not topic_filter.category_ids:
            return 0
        sql, params = _selection(topic_filter, ("id",))
        with self._connect() as conn:
            value = conn.execute(text(f"SELECT COUNT(*) FROM ({sql}) AS selection"), params).scalar()
        return int(value or 0)

    def max_field(self, topic_filter: TopicFilter, field: str) -> datetime | None:
        _check_columns((field,), TIMESTAMP_COLUMNS)
        if not topic_filter.category_ids:
            return None
        sql, params = _selection(topic_filter, ("id", field))
        with self._connect() as conn:
            return conn.execute(
                text(f"SELECT MAX(selection.{field}) FROM ({sql}) AS selection"),
                params,
            ).scalar()


class SqlCategoryStore:
    def __init__(self, engine_factory: Callable[[], Engine] = get_engine) -> None:
        self._engine_factory = engine_factory

    def categories_excluding(self, *, restricted: bool, skip_slugs: frozenset[str]) -> set[int]:
        clauses = ["NOT (c.slug = ANY(CAST(:skip_slugs AS text[])))"]
        if restricted:
            clauses.append("c.read_restricted IS FALSE")
        q = text(f"SELECT c.id FROM categories c WHERE {' AND '.join(clauses)}")
        try:
            with self._engine_factory().begin() as conn:
                rows = conn.execute(q, {"skip_slugs": sorted(skip_slugs)}).scalars().all()
        except DBAPIError as exc:
            raise StorageUnavailableError(f"Category store unavailable: {exc.orig!r}") from exc
        return {int(category_id) for category_id in rows}
