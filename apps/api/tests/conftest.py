import os
import shutil
import subprocess
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, text
from testcontainers.postgres import PostgresContainer

import forum_sitemap.db
from forum_sitemap.config import SitemapSettings
from forum_sitemap.deps import get_feed_generator
from forum_sitemap.main import app
from forum_sitemap.sitemap import (
    Category,
    FeedCache,
    FeedGenerator,
    SortOrder,
    StorageUnavailableError,
    Topic,
)

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def make_topic(
    topic_id: int,
    *,
    category_id: int = 1,
    last_posted_at: datetime | None = None,
    updated_at: datetime | None = None,
    created_at: datetime | None = None,
    visible: bool = True,
    posts_count: int = 1,
    title: str | None = None,
    slug: str | None = None,
) -> Topic:
    return Topic(
        id=topic_id,
        slug=slug or f"topic-{topic_id}",
        title=title or f"Topic {topic_id}",
        category_id=category_id,
        visible=visible,
        last_posted_at=last_posted_at,
        updated_at=updated_at or NOW - timedelta(days=30),
        created_at=created_at or NOW - timedelta(days=60),
        posts_count=posts_count,
    )


class FakeTopicStore:
    """In-memory topic store with the same ordering rules as the SQL store."""

    def __init__(self, topics=()):
        self.topics = list(topics)
        self.calls = 0
        self.fail = False

    def _select(self, topic_filter):
        self.calls += 1
        if self.fail:
            raise StorageUnavailableError("topic store is down")
        rows = [
            topic
            for topic in self.topics
            if topic.category_id in topic_filter.category_ids
            and (topic.visible or not topic_filter.visible_only)
            and (
                topic_filter.since is None
                or (topic.last_posted_at is not None and topic.last_posted_at > topic_filter.since)
            )
        ]
        if topic_filter.order is SortOrder.ASC:
            rows.sort(key=lambda t: (t.last_posted_at is None, t.last_posted_at or _EPOCH, t.id))
        else:
            rows.sort(
                key=lambda t: (t.last_posted_at is not None, t.last_posted_at or _EPOCH, t.id),
                reverse=True,
            )
        end = None if topic_filter.limit is None else topic_filter.offset + topic_filter.limit
        return rows[topic_filter.offset:end]

    def query_topics(self, topic_filter, columns):
        return [{column: getattr(topic, column) for column in columns} for topic in self._select(topic_filter)]

    def count(self, topic_filter):
        return len(self._select(topic_filter))

    def max_field(self, topic_filter, field):
        values = [getattr(topic, field) for topic in self._select(topic_filter)]
        return max((value for value in values if value is not None), default=None)


class FakeCategoryStore:
    def __init__(self, categories=()):
        self.categories = list(categories)
        self.calls = 0

    def categories_excluding(self, *, restricted, skip_slugs):
        self.calls += 1
        return {
            category.id
            for category in self.categories
            if not (restricted and category.read_restricted) and category.slug not in skip_slugs
        }


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SettingsHolder:
    def __init__(self, settings: SitemapSettings):
        self.current = settings

    def __call__(self) -> SitemapSettings:
        return self.current

    def update(self, **changes) -> None:
        self.current = replace(self.current, **changes)


@pytest.fixture
def categories():
    return FakeCategoryStore(
        [
            Category(id=1, slug="general"),
            Category(id=2, slug="staff", read_restricted=True),
            Category(id=3, slug="off-topic"),
        ]
    )


@pytest.fixture
def topics():
    return FakeTopicStore()


@pytest.fixture
def settings():
    return SettingsHolder(
        SitemapSettings(
            enabled=True,
            topics_per_page=10,
            skip_categories=frozenset(),
            default_locale="en_US",
            base_url="https://forum.example.com",
            site_title="Example Forum",
            posts_per_page=20,
        )
    )


@pytest.fixture
def cache_clock():
    return FakeClock()


@pytest.fixture
def cache(cache_clock):
    return FeedCache(clock=cache_clock)


class _CacheMiss(Exception):
    pass


def _miss():
    raise _CacheMiss


@pytest.fixture
def is_cached(cache):
    """Check a key through ``get_or_compute`` without storing on a miss."""

    def check(key: str) -> bool:
        try:
            cache.get_or_compute(key, 1, _miss)
        except _CacheMiss:
            return False
        return True

    return check


@pytest.fixture
def generator(topics, categories, cache, settings):
    return FeedGenerator(topics, categories, cache, settings_provider=settings, clock=lambda: NOW)


@pytest_asyncio.fixture
async def client(generator):
    app.dependency_overrides[get_feed_generator] = lambda: generator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_feed_generator, None)


def _docker_available() -> bool:
    if shutil.which("docker") is None:
        return False

    try:
        subprocess.check_output(["docker", "info"], stderr=subprocess.STDOUT, text=True)
    except Exception:
        return False

    return True


def _ensure_docker_host_env() -> None:
    if os.environ.get("DOCKER_HOST"):
        return

    try:
        host = subprocess.check_output(
            ["docker", "context", "inspect", "--format", "{{.Endpoints.docker.Host}}"],
            text=True,
        ).strip()
    except Exception:
        return

    if host:
        os.environ["DOCKER_HOST"] = host


@pytest.fixture(scope="session")
def postgres_container():
    _ensure_docker_host_env()
    os.environ.setdefault("TESTCONTAINERS_RYUK_DISABLED", "true")

    if not _docker_available():
        pytest.skip("Docker is required for integration tests")

    with PostgresContainer("postgres:16-alpine", driver="psycopg") as postgres:
        yield postgres


@pytest.fixture(scope="session")
def db_engine(postgres_container):
    engine = create_engine(postgres_container.get_connection_url())

    # tests/conftest.py -> repo root is three levels up from apps/api/tests
    init_sql_path = Path(__file__).parent / "../../../infra/db/init.sql"
    with engine.begin() as conn:
        conn.execute(text(init_sql_path.read_text()))

    forum_sitemap.db.register_query_logging(engine)
    forum_sitemap.db._ENGINE = engine
    yield engine
    engine.dispose()
    forum_sitemap.db._ENGINE = None


@pytest.fixture(scope="function")
def db_session(db_engine):
    with db_engine.begin() as conn:
        conn.execute(text("TRUNCATE TABLE topics, categories RESTART IDENTITY CASCADE"))
    yield db_engine


@pytest.fixture
def now():
    return NOW


@pytest.fixture(name="make_topic")
def make_topic_fixture():
    return make_topic
