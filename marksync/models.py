"""
Persisted data model for the sync engine.

SyncInfo and RemovedSyncRecord are the values stored under their StoreKey;
StoreEntry is the SQLAlchemy table SqlStore keeps them in.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marksync.utils import strip_secrets


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class StoreEntry(Base):
    """
    One key/value pair of persisted sync state.

    Attributes:
        key: StoreKey value
        value: JSON-serialisable value
        updated_at: Last write time
    """
    __tablename__ = 'store_entries'

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<StoreEntry(key='{self.key}')>"


@dataclass
class SyncInfo:
    """Remote sync identity."""
    id: Optional[str] = None
    credential: Optional[str] = None
    version: Optional[str] = None
    service_url: Optional[str] = None
    last_updated: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.id and self.credential)

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        return data if include_secrets else strip_secrets(data)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncInfo":
        data = data or {}
        return cls(**{k: data.get(k) for k in ("id", "credential", "version", "service_url", "last_updated")})


@dataclass
class RemovedSyncRecord:
    """Snapshot taken when the remote sync id turns out to be gone."""
    bookmarks: Any = None
    last_updated: Optional[str] = None
    sync_info: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.sync_info = strip_secrets(self.sync_info)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemovedSyncRecord":
        return cls(
            bookmarks=data.get("bookmarks"),
            last_updated=data.get("last_updated"),
            sync_info=data.get("sync_info") or {},
        )
