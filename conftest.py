"""
Pytest configuration and shared fixtures.

Store-level fixtures run every test against both entity-map backends:
plain dicts and the SQLAlchemy table on a private in-memory SQLite database.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.analytics import AnalyticsStore
from app.entities import AnalyticsEvent, Conversation, Message
from app.main import app
from app.storage import InMemoryEntityMap, SqlEntityMap, create_storage_engine, init_db
from app.store import MessagingStore


class StepClock:
    """Deterministic clock: each reading is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)):
        self.current = start - timedelta(seconds=1)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture(params=["memory", "sql"])
def entity_maps(request):
    """(conversations, messages, analytics events) maps for one backend."""
    if request.param == "memory":
        yield (
            InMemoryEntityMap[Conversation](),
            InMemoryEntityMap[Message](),
            InMemoryEntityMap[AnalyticsEvent](),
        )
        return

    engine = create_storage_engine("sqlite://")
    init_db(engine)
    factory = sessionmaker(bind=engine, autoflush=False)
    yield (
        SqlEntityMap(Conversation, "conversation", factory),
        SqlEntityMap(Message, "message", factory),
        SqlEntityMap(AnalyticsEvent, "analytics_event", factory),
    )
    engine.dispose()


@pytest.fixture
def store(entity_maps, clock) -> MessagingStore:
    conversations, messages, _ = entity_maps
    return MessagingStore(conversations, messages, clock=clock)


@pytest.fixture
def analytics(entity_maps, clock) -> AnalyticsStore:
    return AnalyticsStore(entity_maps[2], clock=clock)


@pytest.fixture
def client():
    """Test client with fresh stores for each test (lifespan rebuilds them)."""
    with TestClient(app) as test_client:
        yield test_client
