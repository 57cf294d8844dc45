from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from forum_sitemap.config import DATABASE_URL, LOG_DB_SLOW_QUERY_MS


_ENGINE: Engine | None = None
_logger = logging.getLogger("db")

# Sitemap variant whose computation issued the current queries.
_QUERY_VARIANT: ContextVar[str | None] = ContextVar("sitemap_query_variant", default=None)


def get_engine() -> Engine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = create_engine(DATABASE_URL, pool_pre_ping=True)
        register_query_logging(_ENGINE)
    return _ENGINE


@contextmanager
def query_variant(variant: str) -> Iterator[None]:
    token = _QUERY_VARIANT.set(variant)
    try:
        yield
    finally:
        _QUERY_VARIANT.reset(token)


def register_query_logging(engine: Engine) -> None:
    @event.listens_for(engine, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info["query_start_time"] = time.perf_counter()

    @event.listens_for(engine, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start = conn.info.pop("query_start_time", None)
        if start is None:
            return
        duration_ms = (time.perf_counter() - start) * 1000
        # LOG_DB_SLOW_QUERY_MS <= 0 logs all queries.
        if LOG_DB_SLOW_QUERY_MS <= 0 or duration_ms >= LOG_DB_SLOW_QUERY_MS:
            _logger.info(
                "db_query",
                extra={
                    "duration_ms": round(duration_ms, 2),
                    "statement": statement.strip()[:500],
                    "executemany": executemany,
                    "variant": _QUERY_VARIANT.get(),
                },
            )
