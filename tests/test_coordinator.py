"""Tests for the cross-context coordinator and foreground client."""
import pytest

from marksync.coordinator import (
    ForegroundClient,
    LocalChannel,
    MessageCommand,
    StatusMirror,
    SyncCoordinator,
)
from marksync.errors import RemoteSyncNotFoundError, SyncDisabledError
from marksync.request import SyncKind, SyncRequest
from marksync.status import SyncStatus
from marksync.store import StoreKey


class TestSyncCoordinator:
    """Tests for SyncCoordinator.handle()."""

    @pytest.mark.asyncio
    async def test_unknown_command(self, engine):
        coordinator = SyncCoordinator(engine)

        response = await coordinator.handle({"command": "reformat_disk"})

        assert response["ok"] is False
        assert response["error"]["kind"] == "UnknownCommandError"

    @pytest.mark.asyncio
    async def test_query_queue_length(self, engine):
        coordinator = SyncCoordinator(engine)
        engine.enqueue(SyncRequest(kind=SyncKind.REMOTE))

        response = await coordinator.handle({"command": "query_queue_length"})

        assert response == {"ok": True, "result": 1}

    @pytest.mark.asyncio
    async def test_query_current_sync_when_idle(self, engine):
        coordinator = SyncCoordinator(engine)
        response = await coordinator.handle({"command": MessageCommand.QUERY_CURRENT_SYNC.value})
        assert response == {"ok": True, "result": None}

    @pytest.mark.asyncio
    async def test_submit_sync(self, engine):
        coordinator = SyncCoordinator(engine)

        response = await coordinator.handle({
            "command": "submit_sync",
            "request": {"kind": "remote"},
        })

        assert response == {"ok": True, "result": ["remote"]}
        assert engine.enabled is True

    @pytest.mark.asyncio
    async def test_submit_without_running(self, engine):
        """run_immediately=False only queues the request."""
        coordinator = SyncCoordinator(engine)

        response = await coordinator.handle({
            "command": "submit_sync",
            "request": {"kind": "remote"},
            "run_immediately": False,
        })

        assert response["ok"] is True
        assert response["result"]["id"]
        assert engine.queue_length() == 1

    @pytest.mark.asyncio
    async def test_errors_become_plain_data(self, enabled_engine):
        coordinator = SyncCoordinator(enabled_engine)
        await enabled_engine.disable()

        response = await coordinator.handle({"command": "execute_sync"})

        assert response == {
            "ok": False,
            "error": {"kind": "SyncDisabledError", "message": "Sync is disabled", "soft": False},
        }

    @pytest.mark.asyncio
    async def test_request_disable_and_enable(self, enabled_engine, store):
        coordinator = SyncCoordinator(enabled_engine)

        await coordinator.handle({"command": "request_disable"})
        assert await store.get(StoreKey.SYNC_ENABLED) is False

        await coordinator.handle({"command": "request_enable"})
        assert await store.get(StoreKey.SYNC_ENABLED) is True

    @pytest.mark.asyncio
    async def test_restore_bookmarks(self, enabled_engine, remote):
        coordinator = SyncCoordinator(enabled_engine)

        response = await coordinator.handle({
            "command": "restore_bookmarks",
            "bookmarks": ["backup"],
        })

        assert response == {"ok": True, "result": ["backup", "local"]}
        assert len(remote.updates) == 1

    @pytest.mark.asyncio
    async def test_query_status(self, enabled_engine):
        coordinator = SyncCoordinator(enabled_engine)

        response = await coordinator.handle({"command": "query_status"})

        assert response["result"] == {
            "enabled": True,
            "status": "idle-synced",
            "current_sync": None,
            "queue_length": 0,
        }


class TestForegroundClient:
    """Tests for the foreground side over a LocalChannel."""

    @pytest.mark.asyncio
    async def test_status_mirror_follows_pushes(self, engine):
        client = ForegroundClient(LocalChannel(SyncCoordinator(engine)))
        assert client.status.status == SyncStatus.IDLE_NOT_SYNCED

        await client.submit_sync(SyncRequest(kind=SyncKind.REMOTE))

        assert client.status.status == SyncStatus.IDLE_SYNCED
        client.close()

    @pytest.mark.asyncio
    async def test_errors_are_rebuilt(self, engine):
        client = ForegroundClient(LocalChannel(SyncCoordinator(engine)))

        with pytest.raises(SyncDisabledError):
            await client.execute_sync()

    @pytest.mark.asyncio
    async def test_remote_failure_is_rebuilt(self, enabled_engine, remote):
        client = ForegroundClient(LocalChannel(SyncCoordinator(enabled_engine)))
        remote.update_errors.append(RemoteSyncNotFoundError())

        with pytest.raises(RemoteSyncNotFoundError):
            await client.submit_sync(SyncRequest(kind=SyncKind.REMOTE))

        assert await client.get_queue_length() == 0
        assert (await client.get_status())["enabled"] is False
        assert client.status.status == SyncStatus.IDLE_NOT_SYNCED

    @pytest.mark.asyncio
    async def test_queries(self, enabled_engine):
        client = ForegroundClient(LocalChannel(SyncCoordinator(enabled_engine)))

        assert await client.get_current_sync() is None
        assert await client.get_queue_length() == 0

        await client.disable_sync()
        assert enabled_engine.enabled is False
        await client.enable_sync()
        assert enabled_engine.enabled is True

    @pytest.mark.asyncio
    async def test_restore_bookmarks(self, enabled_engine):
        client = ForegroundClient(LocalChannel(SyncCoordinator(enabled_engine)))
        assert await client.restore_bookmarks(["saved"]) == ["saved", "local"]

    @pytest.mark.asyncio
    async def test_channel_requires_plain_data(self, engine):
        """Live objects cannot cross the channel."""
        channel = LocalChannel(SyncCoordinator(engine))

        with pytest.raises(TypeError):
            await channel.send({"command": "submit_sync", "request": SyncRequest(kind=SyncKind.LOCAL)})

    @pytest.mark.asyncio
    async def test_close_unsubscribes(self, engine):
        coordinator = SyncCoordinator(engine)
        client = ForegroundClient(LocalChannel(coordinator))
        client.close()

        await engine.enable()

        assert client.status.status == SyncStatus.IDLE_NOT_SYNCED


class TestStatusMirror:
    """Tests for StatusMirror."""

    def test_empty_until_first_push(self):
        assert StatusMirror().status is None

    def test_status_is_read_only(self):
        mirror = StatusMirror()
        with pytest.raises(AttributeError):
            mirror.status = SyncStatus.IDLE_SYNCED
