"""
marksync - bookmark sync orchestration

Queues local and remote bookmark sync requests, processes them one batch at
a time against a set of sync providers, commits the result to a remote sync
service and recovers from failures by requeueing, refreshing or disabling.

Design Principles:
- One background owner of the queue; foreground contexts talk to it by message
- Single-flight processing with one remote commit per batch
- Failure handling chosen from the error class alone
- State persisted through a small key/value Store (SQLite by default)

Example Usage:
    >>> from marksync import SyncEngine, SyncRequest, SyncKind, SqlStore, ApiClient
    >>> engine = SyncEngine(SqlStore(), ApiClient(), cipher, [bookmark_provider])
    >>> await engine.start()
    >>> await engine.queue_sync(SyncRequest(kind=SyncKind.REMOTE))
"""

__version__ = "0.1.0"
__author__ = "marksync Contributors"

# Configuration
from marksync.config import SyncConfig, get_config, init_config

# Requests and queue
from marksync.request import ProviderResult, SyncKind, SyncRequest
from marksync.sync_queue import SyncQueue

# Engine
from marksync.engine import SyncEngine
from marksync.recovery import ErrorReporter, RecoveryAction, classify
from marksync.scheduler import PeriodicUpdateScheduler
from marksync.status import StatusBroadcaster, StatusSink, SyncStatus

# Collaborators
from marksync.cache import BookmarkCache, Cipher
from marksync.providers import ProviderMetadata, ProviderRegistry, SyncProvider
from marksync.remote import ApiClient, RemoteService
from marksync.store import MemoryStore, SqlStore, Store, StoreKey

# Cross-context
from marksync.coordinator import ForegroundClient, LocalChannel, MessageCommand, StatusMirror, SyncCoordinator

# Errors
from marksync.errors import SyncError

__all__ = [
    # Config
    "SyncConfig",
    "get_config",
    "init_config",
    # Requests
    "ProviderResult",
    "SyncKind",
    "SyncRequest",
    "SyncQueue",
    # Engine
    "SyncEngine",
    "ErrorReporter",
    "RecoveryAction",
    "classify",
    "PeriodicUpdateScheduler",
    "StatusBroadcaster",
    "StatusSink",
    "SyncStatus",
    # Collaborators
    "BookmarkCache",
    "Cipher",
    "ProviderMetadata",
    "ProviderRegistry",
    "SyncProvider",
    "ApiClient",
    "RemoteService",
    "MemoryStore",
    "SqlStore",
    "Store",
    "StoreKey",
    # Cross-context
    "ForegroundClient",
    "LocalChannel",
    "MessageCommand",
    "StatusMirror",
    "SyncCoordinator",
    # Errors
    "SyncError",
]
