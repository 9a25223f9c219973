"""
Failure classification and diagnostics reporting.

classify() maps a failure to exactly one RecoveryAction. The sets below are
closed: an error belongs to at most one of them, and anything outside all of
them is surfaced to the caller unchanged.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

import aiohttp

from marksync.errors import (
    ChangesPendingError,
    ConnectivityError,
    ContainerChangedError,
    DataDriftError,
    EntityNotFoundError,
    MalformedSyncDescriptorError,
    MappingConflictError,
    NativeReadError,
    NativeWriteError,
    RateLimitedError,
    RemoteSyncNotFoundError,
    SyncError,
    SyncFailedError,
    UnsupportedVersionError,
)
from marksync.request import SyncKind, SyncRequest

logger = logging.getLogger(__name__)


class RecoveryAction(Enum):
    """What the engine does about a failed sync."""
    REQUEUE = "requeue"
    REFRESH = "refresh"
    DISABLE = "disable"
    SURFACE = "surface"


CONNECTIVITY_ERRORS = (ConnectivityError, aiohttp.ClientConnectionError, asyncio.TimeoutError)

# Local and remote state have drifted apart
REFRESH_ERRORS = (
    MappingConflictError,
    ContainerChangedError,
    EntityNotFoundError,
    DataDriftError,
    NativeWriteError,
    NativeReadError,
)

# The sync session itself is invalid
DISABLE_ERRORS = (
    MalformedSyncDescriptorError,
    RemoteSyncNotFoundError,
    UnsupportedVersionError,
    RateLimitedError,
)


def is_connectivity_error(error: BaseException) -> bool:
    return isinstance(error, CONNECTIVITY_ERRORS)


def as_sync_error(error: BaseException) -> SyncError:
    """Wrap unrecognised errors in SyncFailedError."""
    if isinstance(error, SyncError):
        return error
    return SyncFailedError(cause=error)


def classify(error: BaseException, request: Optional[SyncRequest],
             sync_enabled: bool = True) -> RecoveryAction:
    """
    Choose the recovery action for a failed request.

    Args:
        error: The raised error
        request: The request being processed when it failed
        sync_enabled: Whether sync was enabled when the failure happened

    Returns:
        Exactly one RecoveryAction
    """
    local_origin = request is not None and request.kind == SyncKind.LOCAL

    if is_connectivity_error(error) and not local_origin:
        return RecoveryAction.REQUEUE

    # Nothing to disable or refresh when sync isn't on yet
    if not sync_enabled:
        return RecoveryAction.SURFACE

    if isinstance(error, DISABLE_ERRORS):
        return RecoveryAction.DISABLE

    if isinstance(error, REFRESH_ERRORS) and not local_origin:
        return RecoveryAction.REFRESH

    return RecoveryAction.SURFACE


def is_blocking_error(error: BaseException) -> bool:
    """Whether the UI should show its blocking/default page for this error."""
    return isinstance(error, DISABLE_ERRORS) or isinstance(error, ChangesPendingError)


@dataclass
class ReportedError:
    """One entry of the error history."""
    kind: str
    message: str
    request_id: Optional[str] = None
    action: Optional[str] = None
    reported_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind,
            'message': self.message,
            'request_id': self.request_id,
            'action': self.action,
            'reported_at': self.reported_at.isoformat(),
        }


class ErrorReporter:
    """
    Process-wide sink for terminal sync errors.

    Logs each error, keeps a bounded history for diagnostics and notifies
    listeners. A failing listener is logged and skipped.
    """

    def __init__(self, history_size: int = 50):
        self.history: Deque[ReportedError] = deque(maxlen=history_size)
        self._listeners: List[Callable[[SyncError, Optional[SyncRequest]], None]] = []

    def add_listener(self, listener: Callable[[SyncError, Optional[SyncRequest]], None]) -> None:
        self._listeners.append(listener)

    def report(self, error: SyncError, request: Optional[SyncRequest] = None,
               action: Optional[RecoveryAction] = None) -> None:
        entry = ReportedError(
            kind=type(error).__name__,
            message=error.message,
            request_id=request.id if request else None,
            action=action.value if action else None,
        )
        self.history.append(entry)
        logger.error(f"{entry.kind}: {entry.message}", exc_info=error.cause)

        for listener in list(self._listeners):
            try:
                listener(error, request)
            except Exception as e:
                logger.error(f"Error listener {listener!r} failed: {e}")

    def recent(self, limit: Optional[int] = None) -> List[ReportedError]:
        entries = list(self.history)
        return entries[-limit:] if limit else entries
