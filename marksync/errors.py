"""
Error taxonomy for the sync engine.

Every failure the engine can observe is expressed as a subclass of
SyncError. The recovery policy (marksync.recovery) selects its action from
the class of the error alone, so adding a class here means deciding which
closed set it belongs to there.

Errors cross the foreground/background boundary as plain dictionaries
({"kind": ..., "message": ...}) and are rebuilt on the other side.
"""
from typing import Any, Dict, Optional, Type


class SyncError(Exception):
    """Base exception for sync-related errors."""

    default_message = "Sync error"
    soft = False

    def __init__(self, message: Optional[str] = None, cause: Optional[BaseException] = None):
        self.message = message or self.default_message
        self.cause = cause
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause


class ConnectivityError(SyncError):
    """The remote service could not be reached."""
    default_message = "Network connection unavailable"


# State drift: local and remote data no longer line up

class MappingConflictError(SyncError):
    """A local bookmark has no mapping to its synced counterpart."""
    default_message = "Bookmark mapping not found"


class ContainerChangedError(SyncError):
    """A root bookmark container was modified outside of sync."""
    default_message = "Bookmark container changed"


class DataDriftError(SyncError):
    """Local data is out of date relative to the remote service."""
    default_message = "Data out of sync"


class NativeWriteError(SyncError):
    """Writing to the native bookmark tree failed."""
    default_message = "Failed to write native bookmarks"


class NativeReadError(SyncError):
    """Reading the native bookmark tree failed."""
    default_message = "Failed to read native bookmarks"


class EntityNotFoundError(SyncError):
    """A bookmark referenced by a change no longer exists."""
    default_message = "Bookmark not found"


# Invalid session: sync has to be disabled

class MalformedSyncDescriptorError(SyncError):
    """Stored sync info is missing or incomplete."""
    default_message = "Sync info incomplete"


class RemoteSyncNotFoundError(SyncError):
    """The sync id no longer exists on the remote service."""
    default_message = "Sync not found"


class UnsupportedVersionError(SyncError):
    """The remote data was written by a newer client."""
    default_message = "Sync version not supported"


class RateLimitedError(SyncError):
    """The remote service refused the request due to rate limiting."""
    default_message = "Too many requests"


# Everything else

class SyncFailedError(SyncError):
    """Generic sync failure wrapping an unrecognised error."""
    default_message = "Sync failed"


class ChangesPendingError(SyncError):
    """Changes could not be committed yet and will be retried."""
    default_message = "Changes pending, will retry"
    soft = True


class SyncDisabledError(SyncError):
    """The operation requires sync to be enabled."""
    default_message = "Sync is disabled"


class SyncCancelledError(SyncError):
    """A queued request was dropped before it was processed."""
    default_message = "Sync request superseded"


class UnknownCommandError(SyncError):
    """A message named a command the coordinator does not handle."""
    default_message = "Unknown command"


def _error_classes() -> Dict[str, Type[SyncError]]:
    classes = {}
    pending = [SyncError]
    while pending:
        cls = pending.pop()
        classes[cls.__name__] = cls
        pending.extend(cls.__subclasses__())
    return classes


def error_to_dict(error: BaseException) -> Dict[str, Any]:
    """Convert an error to plain data for a message response."""
    if isinstance(error, SyncError):
        return {"kind": type(error).__name__, "message": error.message, "soft": error.soft}
    return {"kind": SyncFailedError.__name__, "message": str(error) or SyncFailedError.default_message,
            "soft": False}


def error_from_dict(data: Dict[str, Any]) -> SyncError:
    """Rebuild an error from its plain-data form. Unknown kinds become SyncFailedError."""
    cls = _error_classes().get(data.get("kind", ""), SyncFailedError)
    return cls(data.get("message"))
