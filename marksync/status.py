"""
Status indicator plumbing.

The engine reports one of four states through a StatusSink. It never
assumes how (or whether) the state is rendered.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional

from marksync.request import SyncKind

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Visual sync states."""
    IDLE_SYNCED = "idle-synced"
    IDLE_NOT_SYNCED = "idle-not-synced"
    SYNCING_LOCAL = "syncing-local"
    SYNCING_REMOTE = "syncing-remote"

    @classmethod
    def for_kind(cls, kind: SyncKind) -> "SyncStatus":
        """Status shown while a request of the given kind is processed."""
        return cls.SYNCING_LOCAL if kind == SyncKind.LOCAL else cls.SYNCING_REMOTE

    @classmethod
    def idle(cls, enabled: bool) -> "SyncStatus":
        return cls.IDLE_SYNCED if enabled else cls.IDLE_NOT_SYNCED


class StatusSink(ABC):
    """Receiver for status changes."""

    @abstractmethod
    def set_status(self, status: SyncStatus) -> None:
        pass


class StatusBroadcaster(StatusSink):
    """
    Status sink that remembers the latest state and pushes it to listeners.

    Duplicate consecutive states are not re-broadcast.
    """

    def __init__(self):
        self.status: Optional[SyncStatus] = None
        self._listeners: List[Callable[[SyncStatus], None]] = []

    def add_listener(self, listener: Callable[[SyncStatus], None]) -> None:
        self._listeners.append(listener)
        if self.status is not None:
            listener(self.status)

    def remove_listener(self, listener: Callable[[SyncStatus], None]) -> bool:
        if listener in self._listeners:
            self._listeners.remove(listener)
            return True
        return False

    def set_status(self, status: SyncStatus) -> None:
        if status == self.status:
            return
        self.status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener {listener!r} failed: {e}")
