"""
Sync orchestration engine.

One SyncEngine instance lives in the background owner process. It is the
only holder of the queue and the current sync; foreground contexts reach it
through marksync.coordinator.

Processing is single-flight: process_queue() returns immediately while a
sync is in flight, and the running loop picks up anything queued in the
meantime; requests that arrive during the commit start the next batch. The guard, the dequeue and the assignment of the current sync
happen without an intervening await, so two loops can never interleave.

Example Usage:
    >>> engine = SyncEngine(store, ApiClient(), cipher, [bookmark_provider])
    >>> await engine.start()
    >>> await engine.queue_sync(SyncRequest(kind=SyncKind.LOCAL))
"""
import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from marksync.cache import BookmarkCache, Cipher
from marksync.config import SyncConfig, get_config
from marksync.errors import (
    ChangesPendingError,
    MalformedSyncDescriptorError,
    RemoteSyncNotFoundError,
    SyncDisabledError,
    SyncError,
    UnsupportedVersionError,
)
from marksync.models import RemovedSyncRecord, SyncInfo
from marksync.providers import BOOKMARKS_PROVIDER, ProviderRegistry, SyncProvider
from marksync.recovery import ErrorReporter, RecoveryAction, as_sync_error, classify, is_blocking_error
from marksync.remote import RemoteService
from marksync.request import SyncKind, SyncRequest
from marksync.scheduler import PeriodicUpdateScheduler
from marksync.status import StatusBroadcaster, StatusSink, SyncStatus
from marksync.store import Store, StoreKey
from marksync.sync_queue import SyncQueue
from marksync.utils import compare_versions, parse_timestamp, strip_secrets

logger = logging.getLogger(__name__)


class SyncEngine:
    """
    Background owner of the sync queue.

    Args:
        store: Persistence for sync state
        remote: Remote sync service
        cipher: Payload encryption
        providers: Sync providers, in dispatch order
        status_sink: Receiver of status indicator changes
        reporter: Process-wide error reporter
        config: Engine configuration (global config if omitted)
        payload_provider: Name of the provider whose data is committed remotely
    """

    def __init__(self, store: Store, remote: RemoteService, cipher: Cipher,
                 providers: Union[ProviderRegistry, Iterable[SyncProvider]],
                 status_sink: Optional[StatusSink] = None,
                 reporter: Optional[ErrorReporter] = None,
                 config: Optional[SyncConfig] = None,
                 payload_provider: str = BOOKMARKS_PROVIDER):
        self.config = config or get_config()
        self.store = store
        self.remote = remote
        self.cipher = cipher
        self.providers = providers if isinstance(providers, ProviderRegistry) else ProviderRegistry(providers)
        self.status_sink = status_sink or StatusBroadcaster()
        self.reporter = reporter or ErrorReporter(self.config.error_history_size)
        self.cache = BookmarkCache(store, cipher)
        self.scheduler = PeriodicUpdateScheduler(self._on_update_check, self.config.update_check_period)
        self.app_version = self.config.app_version
        self.payload_provider = payload_provider

        self.queue = SyncQueue()
        self._current_sync: Optional[SyncRequest] = None
        self._enabled = False
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        """Cached SyncEnabled flag."""
        return self._enabled

    @property
    def current_sync(self) -> Optional[SyncRequest]:
        return self._current_sync

    def queue_length(self) -> int:
        return len(self.queue)

    def status_snapshot(self) -> Dict[str, Any]:
        """Plain-data view of the engine state."""
        current = self._current_sync
        status = getattr(self.status_sink, "status", None)
        return {
            "enabled": self._enabled,
            "status": status.value if status else SyncStatus.idle(self._enabled).value,
            "current_sync": current.to_dict() if current else None,
            "queue_length": len(self.queue),
        }

    def _show_idle_status(self) -> None:
        self.status_sink.set_status(SyncStatus.idle(self._enabled))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Restore persisted state after a (re)start of the owner process."""
        self._enabled = bool(await self.store.get(StoreKey.SYNC_ENABLED, False))
        self._show_idle_status()

        if self._enabled:
            self.scheduler.start()
            if self.config.startup_check_delay > 0:
                self._spawn(self._delayed_update_check(self.config.startup_check_delay))
        logger.info(f"Sync engine started (sync {'enabled' if self._enabled else 'disabled'})")

    async def close(self) -> None:
        """Stop the timer and any background work."""
        await self.scheduler.aclose()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if isinstance(error, ChangesPendingError):
            logger.debug(f"Background sync deferred: {error.message}")
        elif isinstance(error, SyncError):
            logger.warning(f"Background sync failed: {error.message}")
        elif error is not None:
            logger.error(f"Background sync task crashed: {error}", exc_info=error)

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    def enqueue(self, request: SyncRequest, run_immediately: bool = False) -> asyncio.Future:
        """
        Add a request to the queue.

        While sync is disabled, anything but an enabling request starts the
        queue afresh.

        Args:
            request: Request to queue
            run_immediately: Start processing in the background right away

        Returns:
            The request's completion future
        """
        start_fresh = not self._enabled and not request.enables_sync
        completion = self.queue.enqueue(request, start_fresh=start_fresh)
        if run_immediately:
            self._spawn(self.process_queue())
        return completion

    async def queue_sync(self, request: SyncRequest, run_immediately: bool = True) -> Any:
        """
        Queue a request and wait for its outcome.

        Enables sync afterwards if it was disabled and the request is an
        enabling request.

        Returns:
            The committed payload data

        Raises:
            ChangesPendingError: The request was requeued after a connectivity
                failure; it stays queued and will be retried
            SyncError: The terminal error of the request
        """
        was_enabled = self._enabled
        completion = self.enqueue(request)

        if run_immediately:
            await self.process_queue()

        result = await completion

        if not was_enabled and request.enables_sync and not self._enabled:
            await self.enable()
        return result

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_queue(self, background: bool = False) -> None:
        """
        Drain the queue and commit the batch to the remote service once.

        No-op if a sync is already in flight or nothing is queued.
        """
        if self._current_sync is not None or not self.queue:
            return

        # Disable automatic updates whilst processing
        if self._enabled:
            self.scheduler.stop()

        batch: List[SyncRequest] = []
        processed: Dict[str, Any] = {}
        update_remote = False
        update_version = False
        cancelled = False
        requeued = False

        try:
            while self.queue:
                request = self.queue.dequeue_next()
                self._current_sync = request
                batch.append(request)
                logger.info(
                    f"Processing sync {request.id}{' in background' if background else ''} "
                    f"({len(self.queue)} waiting in queue)"
                )
                self.status_sink.set_status(SyncStatus.for_kind(request.kind))

                if request.kind == SyncKind.CANCEL:
                    await self.cancel_sync()
                    request.resolve()
                    cancelled = True
                    break

                if request.kind == SyncKind.UPGRADE:
                    update_version = True

                # Continue from the data produced earlier in this batch
                if request.payload is None and self.payload_provider in processed:
                    request.payload = processed[self.payload_provider]
                    request.chained = True

                providers = list(self.providers)
                results = await asyncio.gather(*(p.process_sync(request) for p in providers))
                for provider, result in zip(providers, results):
                    processed[provider.name] = result.data
                if any(result.update_remote for result in results):
                    update_remote = True

                request.mark_processed(processed.get(self.payload_provider))
                self._show_idle_status()

            if cancelled:
                for request in batch:
                    if not request.is_settled:
                        request.supersede()
                return

            await self._commit(processed, update_remote, update_version)
            for request in batch:
                request.resolve(processed.get(self.payload_provider))

        except asyncio.CancelledError:
            cancelled = True
            for request in batch:
                request.supersede()
            raise
        except Exception as err:
            try:
                await self._handle_failed_sync(batch, err, background)
            except ChangesPendingError:
                # Requeued work waits for the next check or reconnect
                requeued = True
                raise
        finally:
            self._current_sync = None
            if self._enabled:
                self.scheduler.start()
            # Requests queued while the commit was in flight
            if self.queue and not cancelled and not requeued:
                self._spawn(self.process_queue(background))

    async def _commit(self, processed: Dict[str, Any], update_remote: bool, update_version: bool) -> None:
        data = processed.get(self.payload_provider)
        encrypted = await self.cipher.encrypt(json.dumps(data))

        if not update_remote:
            logger.info("No changes made, skipping remote update")
        else:
            try:
                sync_info = await self._get_sync_info()
                await self.check_sync_version_is_supported(sync_info)
                last_updated = await self.store.get(StoreKey.LAST_UPDATED)
                response = await self.remote.update_bookmarks(
                    sync_info.id, encrypted, update_version, last_updated
                )
            except Exception as err:
                await self._notify_update_remote_failed(err, processed)
                raise
            await self._record_remote_update(sync_info, response, update_version)

        await self.cache.update(data, encrypted)

    async def _notify_update_remote_failed(self, error: BaseException, processed: Dict[str, Any]) -> None:
        providers = list(self.providers)
        results = await asyncio.gather(
            *(p.handle_update_remote_failed(error, processed.get(p.name), self._current_sync)
              for p in providers),
            return_exceptions=True
        )
        for provider, result in zip(providers, results):
            if isinstance(result, Exception):
                logger.error(f"Provider {provider.name} failed to handle remote update failure: {result}")

    async def _record_remote_update(self, sync_info: SyncInfo, response: Dict[str, Any],
                                    update_version: bool) -> None:
        last_updated = response.get("lastUpdated")
        await self.store.set(StoreKey.LAST_UPDATED, last_updated)

        sync_info.last_updated = last_updated
        if update_version:
            sync_info.version = self.app_version
        await self.store.set(StoreKey.SYNC_INFO, sync_info.to_dict(include_secrets=True))
        logger.info(f"Remote bookmarks updated at {last_updated}")

    async def _handle_failed_sync(self, batch: List[SyncRequest], err: BaseException,
                                  background: bool) -> None:
        """Apply the recovery policy and re-raise the final error."""
        failed = self._current_sync
        action = classify(err, failed, self._enabled)
        pending = [request for request in batch if not request.is_settled]

        if action == RecoveryAction.REQUEUE:
            for request in pending:
                request.unchain()
            self.queue.requeue_front(pending)
            if not background:
                logger.warning("No connection, changes re-queued for syncing")
            self._show_idle_status()
            raise ChangesPendingError(cause=err) from err

        error = as_sync_error(err)
        logger.warning(f"Sync {failed.id if failed else ''} failed")
        self.reporter.report(error, failed, action)
        if failed is not None and failed.change_descriptor:
            logger.info(f"Failed change: {failed.change_descriptor}")

        try:
            if action == RecoveryAction.DISABLE:
                if isinstance(error, RemoteSyncNotFoundError):
                    try:
                        await self.set_sync_removed()
                    except Exception as e:
                        logger.error(f"Could not record removed sync: {e}")
                        await self.disable()
                else:
                    await self.disable()
            elif action == RecoveryAction.REFRESH:
                self.queue.clear()
                self.queue.enqueue(SyncRequest(kind=SyncKind.LOCAL))
                logger.info("Local sync data refresh queued")
        finally:
            for request in pending:
                request.fail(error)
            self._show_idle_status()

        raise error

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    async def enable(self) -> None:
        self._enabled = True
        await self.store.remove(StoreKey.REMOVED_SYNC)
        await self.store.set(StoreKey.SYNC_ENABLED, True)
        self.scheduler.start()
        await asyncio.gather(*(p.enable() for p in self.providers))
        self._show_idle_status()
        logger.info("Sync enabled")

    async def disable(self) -> None:
        """Turn sync off. Does nothing if sync is already disabled."""
        if not self._enabled:
            return

        self._enabled = False
        self.scheduler.stop()

        sync_info = await self.store.get(StoreKey.SYNC_INFO)
        if sync_info:
            await self.store.set(StoreKey.SYNC_INFO, strip_secrets(sync_info))
        await self.store.remove(StoreKey.LAST_UPDATED)
        await self.store.set(StoreKey.SYNC_ENABLED, False)

        await asyncio.gather(*(p.disable() for p in self.providers))

        self.queue.clear()
        self._show_idle_status()
        logger.info("Sync disabled")

    async def cancel_sync(self) -> None:
        """Abort processing: providers are disabled along with sync."""
        await self.disable()

    async def disconnect(self) -> None:
        """Disable sync and forget the sync identity entirely."""
        await self.disable()
        self.queue.clear()
        await self.store.remove(StoreKey.SYNC_INFO)
        await self.store.remove(StoreKey.LAST_UPDATED)
        await self.cache.clear()
        logger.info("Sync disconnected")

    async def set_sync_removed(self) -> None:
        """Snapshot local state because the remote sync id no longer exists, then disable."""
        bookmarks = await self.cache.get_cached()
        last_updated = await self.store.get(StoreKey.LAST_UPDATED)
        sync_info = await self.store.get(StoreKey.SYNC_INFO) or {}

        record = RemovedSyncRecord(bookmarks=bookmarks, last_updated=last_updated, sync_info=sync_info)
        await self.store.set(StoreKey.REMOVED_SYNC, record.to_dict())
        logger.warning(
            f"Sync ID {sync_info.get('id')} was not found on remote service (last updated {last_updated})"
        )

        await self.disable()
        await self.store.set(StoreKey.SYNC_INFO, record.sync_info)

    # ------------------------------------------------------------------
    # Remote checks
    # ------------------------------------------------------------------

    async def _get_sync_id(self) -> str:
        sync_info = SyncInfo.from_dict(await self.store.get(StoreKey.SYNC_INFO))
        if not sync_info.id:
            raise MalformedSyncDescriptorError()
        return sync_info.id

    async def _get_sync_info(self) -> SyncInfo:
        sync_info = SyncInfo.from_dict(await self.store.get(StoreKey.SYNC_INFO))
        if not sync_info.is_complete:
            raise MalformedSyncDescriptorError()
        return sync_info

    async def check_for_updates(self, log: bool = True) -> bool:
        """Whether the remote copy changed since the last commit seen locally."""
        stored_last_updated = await self.store.get(StoreKey.LAST_UPDATED)
        remote_last_updated = await self.remote.get_last_updated(await self._get_sync_id())

        local_ts = parse_timestamp(stored_last_updated)
        updates_available = local_ts is None or local_ts != parse_timestamp(remote_last_updated)

        if updates_available and log:
            logger.info(f"Updates available, local:{stored_last_updated or 'none'} remote:{remote_last_updated}")
        return updates_available

    async def check_sync_exists(self) -> bool:
        """False if the remote service no longer knows the sync id (state is then snapshotted)."""
        if not self._enabled:
            raise SyncDisabledError()
        try:
            await self.remote.get_last_updated(await self._get_sync_id())
        except RemoteSyncNotFoundError:
            await self.set_sync_removed()
            return False
        except Exception as e:
            logger.debug(f"Could not confirm sync exists: {e}")
        return True

    async def check_sync_version_is_supported(self, sync_info: Optional[SyncInfo] = None) -> None:
        """
        Raise UnsupportedVersionError if the remote data is newer than this client.
        """
        sync_info = sync_info or await self._get_sync_info()
        remote_version = await self.remote.get_version(sync_info.id)
        if compare_versions(remote_version or "0", self.app_version) > 0:
            raise UnsupportedVersionError(
                f"Remote data version {remote_version} is newer than supported version {self.app_version}"
            )

    async def execute_sync(self, background: bool = False) -> None:
        """
        Check for remote changes (when nothing is queued) and process the queue.

        Raises:
            SyncDisabledError: If sync is not enabled
        """
        if not self._enabled:
            raise SyncDisabledError()

        if not self.queue:
            try:
                updates_available = await self.check_for_updates()
            except Exception as e:
                logger.debug(f"Update check failed, assuming updates available: {e}")
                updates_available = True
            if updates_available:
                self.enqueue(SyncRequest(kind=SyncKind.REMOTE))

        await self.process_queue(background=background)

    @staticmethod
    def is_blocking_error(error: BaseException) -> bool:
        """Whether the error should block the UI until the user acts."""
        return is_blocking_error(error)

    async def get_sync_size(self) -> int:
        """Size in bytes of the cached encrypted payload."""
        return await self.cache.size_in_bytes()

    # ------------------------------------------------------------------
    # Periodic checks
    # ------------------------------------------------------------------

    def _on_update_check(self) -> None:
        if self._current_sync is not None:
            logger.debug("Sync in progress, skipping update check")
            return
        self._spawn(self._run_update_check())

    async def _run_update_check(self) -> None:
        if self._current_sync is not None or not self._enabled:
            return
        await self.execute_sync(background=True)

    async def _delayed_update_check(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._run_update_check()

    def on_reconnected(self) -> None:
        """Check for updates now, e.g. after connectivity came back."""
        self.scheduler.trigger_now()
