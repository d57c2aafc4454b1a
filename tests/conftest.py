"""
Shared fixtures: in-memory cache store, failing cache store, fake upstream
connector and a throwaway SQLite project store.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ranklens.models.base import Base
from ranklens.services.cache_service import CacheService
from ranklens.services.project_store import Project
from ranklens.utils.cache import MemoryCacheStore
from tests.helpers import FailingCacheStore, FakeRankQueryConnector

NEWS_ROWS = [
    {"URL": "https://www.example.com/article/123", "Goal Keyword": "rank tracker(1200), seo tools"},
    {"URL": "https://www.example.com/article/123/how-to-track-rankings", "Goal Keyword": "seo  tools"},
    {"URL": "https://www.example.com/about", "Goal Keyword": "about us", "Tracking Tag": "brand"},
]


@pytest.fixture
def memory_store():
    return MemoryCacheStore(max_entries=100)


@pytest.fixture
def cache(memory_store):
    return CacheService(memory_store, prefix="test")


@pytest.fixture
def failing_store():
    return FailingCacheStore()


@pytest.fixture
def make_connector():
    return FakeRankQueryConnector


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def news_project():
    return Project(
        id="news",
        label="News Desk",
        rows=[dict(r) for r in NEWS_ROWS],
        meta={"sheet": "news"},
        last_updated="2026-10-01T00:00:00",
    )
