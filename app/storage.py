"""
Entity maps: per-entity key/value tables keyed by id.

Two interchangeable backends implement the EntityMap contract:
- InMemoryEntityMap: plain dicts, the default authoritative store
- SqlEntityMap: a SQLAlchemy key/document table, one row per entity

Everything above this layer (preview sync, search, analytics) talks to
the EntityMap interface only.
"""

import logging
from abc import ABC, abstractmethod
from typing import Generic, Iterable, Optional, Type, TypeVar

from pydantic import ValidationError
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.entities import Entity

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

E = TypeVar("E", bound=Entity)


class StoreInvariantError(RuntimeError):
    """Raised on programmer errors that break a storage invariant."""


def create_storage_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the sql backend.

    check_same_thread=False is required for SQLite under FastAPI's thread pool.
    In-memory SQLite needs a single shared connection or every checkout would
    see a fresh, empty database.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False)

    kwargs = {"connect_args": {"check_same_thread": False}, "echo": False}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


engine = create_storage_engine(settings.DATABASE_URL)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Create the entity table if it does not exist yet.
    Called during application startup when the sql backend is selected.
    """
    bind = bind or engine
    logger.debug(f"Initializing database with URL: {bind.url}")
    try:
        # Import models to register them with Base.metadata
        from app.models import EntityRecord  # noqa: F401

        Base.metadata.create_all(bind=bind)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health(bind: Optional[Engine] = None) -> bool:
    """
    Check if the database is reachable and the entity table exists.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    bind = bind or engine
    logger.debug("Checking database health...")
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
            conn.execute(text("SELECT COUNT(*) FROM entities"))
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Entity Map Interface
# =============================================================================

class EntityMap(ABC, Generic[E]):
    """Key/value table of one entity type, keyed by entity id."""

    @abstractmethod
    def get(self, entity_id: str) -> Optional[E]:
        """Return a copy of the entity, or None if absent."""

    @abstractmethod
    def put(self, entity: E) -> E:
        """Insert or replace the entity under its id."""

    @abstractmethod
    def delete(self, entity_id: str) -> bool:
        """Remove one entity. Returns False if it did not exist."""

    @abstractmethod
    def delete_many(self, entity_ids: Iterable[str]) -> int:
        """Remove all given ids in one atomic step. Returns the number removed."""

    @abstractmethod
    def values(self) -> list[E]:
        """Copies of every stored entity, in no particular order."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entity."""

    @abstractmethod
    def __contains__(self, entity_id: str) -> bool: ...

    @abstractmethod
    def __len__(self) -> int: ...

    @staticmethod
    def _require_id(entity: Entity) -> str:
        if not entity.id:
            raise StoreInvariantError(f"Cannot store {type(entity).__name__} without an id")
        return entity.id


class InMemoryEntityMap(EntityMap[E]):
    """
    Dict-backed entity map.

    Entities are copied on the way in and on the way out so no caller
    can mutate stored state without going through put().
    """

    def __init__(self):
        self._items: dict[str, E] = {}

    def get(self, entity_id: str) -> Optional[E]:
        entity = self._items.get(entity_id)
        return entity.model_copy(deep=True) if entity is not None else None

    def put(self, entity: E) -> E:
        entity_id = self._require_id(entity)
        self._items[entity_id] = entity.model_copy(deep=True)
        return entity

    def delete(self, entity_id: str) -> bool:
        return self._items.pop(entity_id, None) is not None

    def delete_many(self, entity_ids: Iterable[str]) -> int:
        removed = 0
        for entity_id in set(entity_ids):
            if self._items.pop(entity_id, None) is not None:
                removed += 1
        return removed

    def values(self) -> list[E]:
        return [entity.model_copy(deep=True) for entity in self._items.values()]

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._items

    def __len__(self) -> int:
        return len(self._items)


class SqlEntityMap(EntityMap[E]):
    """
    Entity map persisted as JSON documents in the `entities` table.

    Each map owns one `kind` partition of the table. Every call runs in its
    own transaction, so delete_many either removes all rows or none.
    """

    def __init__(self, entity_type: Type[E], kind: str, session_factory: sessionmaker = SessionLocal):
        self.entity_type = entity_type
        self.kind = kind
        self._session_factory = session_factory

    def _load(self, payload: str) -> E:
        try:
            return self.entity_type.model_validate_json(payload)
        except ValidationError as e:
            raise StoreInvariantError(f"Corrupt {self.kind} payload in storage: {e}") from e

    def get(self, entity_id: str) -> Optional[E]:
        from app.models import EntityRecord

        with self._session_factory() as db:
            record = db.get(EntityRecord, (self.kind, entity_id))
            return self._load(record.payload) if record is not None else None

    def put(self, entity: E) -> E:
        from app.models import EntityRecord

        entity_id = self._require_id(entity)
        with self._session_factory.begin() as db:
            db.merge(EntityRecord(
                kind=self.kind,
                entity_id=entity_id,
                payload=entity.model_dump_json(by_alias=True),
            ))
        return entity

    def delete(self, entity_id: str) -> bool:
        return self.delete_many([entity_id]) == 1

    def delete_many(self, entity_ids: Iterable[str]) -> int:
        from app.models import EntityRecord

        ids = list(set(entity_ids))
        if not ids:
            return 0
        with self._session_factory.begin() as db:
            removed = (
                db.query(EntityRecord)
                .filter(EntityRecord.kind == self.kind, EntityRecord.entity_id.in_(ids))
                .delete(synchronize_session=False)
            )
        logger.debug(f"Deleted {removed} {self.kind} rows")
        return removed

    def values(self) -> list[E]:
        from app.models import EntityRecord

        with self._session_factory() as db:
            rows = db.query(EntityRecord.payload).filter(EntityRecord.kind == self.kind).all()
            return [self._load(row.payload) for row in rows]

    def clear(self) -> None:
        from app.models import EntityRecord

        with self._session_factory.begin() as db:
            db.query(EntityRecord).filter(EntityRecord.kind == self.kind).delete(
                synchronize_session=False
            )

    def __contains__(self, entity_id: str) -> bool:
        from app.models import EntityRecord

        with self._session_factory() as db:
            return db.get(EntityRecord, (self.kind, entity_id)) is not None

    def __len__(self) -> int:
        from app.models import EntityRecord

        with self._session_factory() as db:
            return db.query(EntityRecord).filter(EntityRecord.kind == self.kind).count()
