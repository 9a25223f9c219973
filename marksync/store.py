"""
Key-value persistence for sync state.

Durable state is small: the enabled flag, the sync identity, the last
remote update timestamp, the removed-sync snapshot and the encrypted
bookmark cache. Anything else (the queue, the current sync) lives in
memory and is lost on restart.
"""
import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, Optional

from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from marksync.config import get_config
from marksync.models import Base, StoreEntry

logger = logging.getLogger(__name__)


class StoreKey(Enum):
    """Keys of persisted sync state."""
    SYNC_ENABLED = "syncEnabled"
    SYNC_INFO = "syncInfo"
    LAST_UPDATED = "lastUpdated"
    REMOVED_SYNC = "removedSync"
    BOOKMARKS = "bookmarks"


def _key(key) -> str:
    return key.value if isinstance(key, StoreKey) else str(key)


class Store(ABC):
    """Async key-value store interface."""

    @abstractmethod
    async def get(self, key: StoreKey, default: Any = None) -> Any:
        pass

    @abstractmethod
    async def set(self, key: StoreKey, value: Any) -> None:
        pass

    @abstractmethod
    async def remove(self, key: StoreKey) -> None:
        pass

    async def get_many(self, keys: Iterable[StoreKey]) -> Dict[StoreKey, Any]:
        return {key: await self.get(key) for key in keys}


class MemoryStore(Store):
    """In-memory store. Values are deep-copied in and out, like a real store."""

    def __init__(self, initial: Optional[Dict[StoreKey, Any]] = None):
        self.data: Dict[str, Any] = {}
        for key, value in (initial or {}).items():
            self.data[_key(key)] = copy.deepcopy(value)

    async def get(self, key: StoreKey, default: Any = None) -> Any:
        return copy.deepcopy(self.data.get(_key(key), default))

    async def set(self, key: StoreKey, value: Any) -> None:
        self.data[_key(key)] = copy.deepcopy(value)

    async def remove(self, key: StoreKey) -> None:
        self.data.pop(_key(key), None)


class SqlStore(Store):
    """
    Store backed by a single SQLAlchemy table.

    Works with a SQLite file by default; any SQLAlchemy URL can be given.
    Session work runs in a worker thread so the event loop never blocks.
    """

    def __init__(self, path: Optional[str] = None, url: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            path: Database file path (for SQLite). Uses config default if not provided.
            url: Full database URL (overrides path).
        """
        config = get_config()

        if url:
            self.url = url
            self.path = None
        elif path:
            self.path = Path(path)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.url = f"sqlite:///{self.path}"
        else:
            self.url = config.get_database_url()
            if config.is_sqlite():
                self.path = config.get_database_path()
                self.path.parent.mkdir(parents=True, exist_ok=True)
            else:
                self.path = None

        if self.url.startswith("sqlite:"):
            self.engine = create_engine(
                self.url,
                connect_args={"check_same_thread": False},
                poolclass=NullPool,  # NullPool for thread-safe SQLite access
                echo=config.database_echo
            )
            event.listen(self.engine, "connect", self._configure_sqlite)
        else:
            self.engine = create_engine(
                self.url,
                pool_pre_ping=True,
                pool_size=config.connection_pool_size,
                pool_recycle=3600,
                connect_args={"connect_timeout": config.connection_timeout},
                echo=config.database_echo
            )

        self.Session = sessionmaker(bind=self.engine, autoflush=False)
        Base.metadata.create_all(self.engine)

    @staticmethod
    def _configure_sqlite(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.close()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Yields:
            SQLAlchemy session with automatic commit/rollback
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_sync(self, key: StoreKey, default: Any = None) -> Any:
        with self.session() as session:
            entry = session.get(StoreEntry, _key(key))
            return default if entry is None or entry.value is None else entry.value

    def set_sync(self, key: StoreKey, value: Any) -> None:
        with self.session() as session:
            entry = session.get(StoreEntry, _key(key))
            if entry is None:
                session.add(StoreEntry(key=_key(key), value=value))
            else:
                entry.value = value

    def remove_sync(self, key: StoreKey) -> None:
        with self.session() as session:
            entry = session.get(StoreEntry, _key(key))
            if entry is not None:
                session.delete(entry)

    def dump(self) -> Dict[str, Any]:
        """All stored entries, for diagnostics."""
        with self.session() as session:
            entries = session.execute(select(StoreEntry).order_by(StoreEntry.key)).scalars()
            return {entry.key: entry.value for entry in entries}

    async def get(self, key: StoreKey, default: Any = None) -> Any:
        return await asyncio.to_thread(self.get_sync, key, default)

    async def set(self, key: StoreKey, value: Any) -> None:
        await asyncio.to_thread(self.set_sync, key, value)

    async def remove(self, key: StoreKey) -> None:
        await asyncio.to_thread(self.remove_sync, key)

    def close(self) -> None:
        self.engine.dispose()
