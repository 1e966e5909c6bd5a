"""
Local persistent key-value store for per-browser preferences and counters.

Reads are tolerant: a missing key, malformed JSON or an unavailable store
yields the caller's default. Writes raise LocalStoreError so callers can
decide whether a lost preference matters.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Optional

from sqlalchemy import Column, DateTime, String, Text, create_engine, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from resilience.exceptions import LocalStoreError

logger = logging.getLogger(__name__)

Base = declarative_base()


class StoredItem(Base):
    __tablename__ = "local_store_items"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return f"<StoredItem(key='{self.key}')>"


class KeyValueStore(ABC):
    """String key -> string value storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        pass

    def close(self) -> None:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store; used in tests and when persistence is off."""

    def __init__(self):
        self._items: dict[str, str] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._items if k.startswith(prefix))


class SQLAlchemyKeyValueStore(KeyValueStore):
    """Key-value rows in a single table; SQLite by default."""

    def __init__(self, dsn: str = "sqlite:///:memory:", echo: bool = False):
        self.dsn = dsn
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if dsn.startswith("sqlite"):
            engine_kwargs.update({"poolclass": StaticPool, "connect_args": {"check_same_thread": False}})
            database = make_url(dsn).database
            if database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
        else:
            engine_kwargs["pool_pre_ping"] = True

        self._engine = create_engine(dsn, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self._engine, autocommit=False, autoflush=False, expire_on_commit=False)
        Base.metadata.create_all(bind=self._engine)
        logger.info("Local store initialized")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Session with automatic commit/rollback."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Local store session error: %s", e)
            raise LocalStoreError(f"Local store operation failed: {e}", cause=e) from e
        finally:
            session.close()

    def get(self, key: str) -> Optional[str]:
        with self.get_session() as session:
            item = session.get(StoredItem, key)
            return item.value if item is not None else None

    def set(self, key: str, value: str) -> None:
        with self.get_session() as session:
            item = session.get(StoredItem, key)
            if item is None:
                session.add(StoredItem(key=key, value=value))
            else:
                item.value = value
                item.updated_at = datetime.now(timezone.utc)

    def delete(self, key: str) -> bool:
        with self.get_session() as session:
            item = session.get(StoredItem, key)
            if item is None:
                return False
            session.delete(item)
            return True

    def keys(self, prefix: str = "") -> list[str]:
        with self.get_session() as session:
            stmt = select(StoredItem.key).where(StoredItem.key.startswith(prefix, autoescape=True)).order_by(StoredItem.key)
            return list(session.scalars(stmt))

    def close(self) -> None:
        self._engine.dispose()


class NamespacedStore:
    """Prefixes keys (``<prefix>-<name>``) and stores JSON values."""

    def __init__(self, backend: KeyValueStore, prefix: str = "cocopilot"):
        self.backend = backend
        self.prefix = prefix

    def full_key(self, name: str) -> str:
        return f"{self.prefix}-{name}"

    def read_raw(self, name: str, default: Optional[str] = None) -> Optional[str]:
        try:
            value = self.backend.get(self.full_key(name))
        except LocalStoreError as e:
            logger.warning("Local store read failed for %s: %s", name, e.message)
            return default
        return default if value is None else value

    def read_json(self, name: str, default: Any = None) -> Any:
        raw = self.read_raw(name)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed stored value for %s", name)
            return default

    def write_json(self, name: str, value: Any) -> None:
        self.backend.set(self.full_key(name), json.dumps(value))

    def write_raw(self, name: str, value: str) -> None:
        self.backend.set(self.full_key(name), value)

    def remove(self, name: str) -> bool:
        return self.backend.delete(self.full_key(name))


class RecentSearches:
    """Newest-first, de-duplicated list of recent search terms."""

    KEY = "recent-searches"

    def __init__(self, store: NamespacedStore, limit: int = 5):
        self.store = store
        self.limit = limit

    def items(self) -> list[str]:
        value = self.store.read_json(self.KEY, [])
        if not isinstance(value, list):
            return []
        return [str(v) for v in value][: self.limit]

    def add(self, term: str) -> list[str]:
        term = term.strip()
        if not term:
            return self.items()
        terms = [term] + [t for t in self.items() if t != term]
        terms = terms[: self.limit]
        self.store.write_json(self.KEY, terms)
        return terms

    def clear(self) -> None:
        self.store.remove(self.KEY)


class InteractionCounters:
    """Aggregate counters, e.g. total searches and popular terms."""

    KEY = "user-behavior"

    def __init__(self, store: NamespacedStore):
        self.store = store

    def snapshot(self) -> dict[str, int]:
        value = self.store.read_json(self.KEY, {})
        if not isinstance(value, dict):
            return {}
        counters = {}
        for name, count in value.items():
            try:
                counters[str(name)] = int(count)
            except (TypeError, ValueError):
                continue
        return counters

    def increment(self, name: str, by: int = 1) -> int:
        counters = self.snapshot()
        counters[name] = counters.get(name, 0) + by
        self.store.write_json(self.KEY, counters)
        return counters[name]

    def top(self, limit: int = 5) -> list[tuple[str, int]]:
        return sorted(self.snapshot().items(), key=lambda item: (-item[1], item[0]))[:limit]


class DismissedFlags:
    """One-time flags such as "recommendations dismissed"."""

    def __init__(self, store: NamespacedStore):
        self.store = store

    def _name(self, flag: str) -> str:
        return f"{flag}-dismissed"

    def is_dismissed(self, flag: str) -> bool:
        return self.store.read_raw(self._name(flag)) == "true"

    def dismiss(self, flag: str) -> None:
        self.store.write_raw(self._name(flag), "true")

    def reset(self, flag: str) -> None:
        self.store.remove(self._name(flag))


def create_store(dsn: str, echo: bool = False) -> KeyValueStore:
    if dsn == "memory":
        return MemoryKeyValueStore()
    return SQLAlchemyKeyValueStore(dsn, echo=echo)
