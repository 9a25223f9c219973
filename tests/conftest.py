import asyncio
import os

import pytest
import pytest_asyncio

from marksync import config as config_module
from marksync.cache import Cipher
from marksync.config import SyncConfig
from marksync.engine import SyncEngine
from marksync.providers import BOOKMARKS_PROVIDER, ProviderMetadata, SyncProvider
from marksync.remote import RemoteService
from marksync.request import ProviderResult, SyncRequest
from marksync.status import StatusBroadcaster
from marksync.store import MemoryStore, StoreKey


SYNC_INFO = {
    "id": "sync-123",
    "credential": "s3cret",
    "version": "1.5.0",
    "service_url": "https://sync.example.com",
}


class FakeProvider(SyncProvider):
    """
    Provider that appends the request kind to the payload it is given.

    Set `gate` to an asyncio.Event to hold processing until it is set, and
    push exceptions onto `errors` to have the next calls raise them.
    """

    def __init__(self, name=BOOKMARKS_PROVIDER, update_remote=True):
        self._metadata = ProviderMetadata(name=name, description="test provider")
        self.update_remote = update_remote
        self.errors = []
        self.gate = None
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.enable_calls = 0
        self.disable_calls = 0
        self.remote_failures = []

    @property
    def metadata(self):
        return self._metadata

    async def enable(self):
        self.enable_calls += 1

    async def disable(self):
        self.disable_calls += 1

    async def process_sync(self, request: SyncRequest) -> ProviderResult:
        self.calls.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.errors:
                raise self.errors.pop(0)
            data = list(request.payload or []) + [request.kind.value]
            return ProviderResult(data=data, update_remote=self.update_remote)
        finally:
            self.in_flight -= 1

    async def handle_update_remote_failed(self, error, last_data, request):
        self.remote_failures.append((error, last_data, request))


class FakeRemote(RemoteService):
    """In-memory remote sync service."""

    def __init__(self, last_updated="2024-01-01T00:00:00.000Z", version="1.5.0"):
        self.last_updated = last_updated
        self.version = version
        self.updates = []
        self.update_errors = []
        self.check_errors = []
        self.update_gate = None

    async def get_last_updated(self, sync_id):
        if self.check_errors:
            raise self.check_errors.pop(0)
        return self.last_updated

    async def get_version(self, sync_id):
        return self.version

    async def update_bookmarks(self, sync_id, encrypted_payload, update_version=False, last_updated=None):
        if self.update_gate is not None:
            await self.update_gate.wait()
        await asyncio.sleep(0)
        if self.update_errors:
            raise self.update_errors.pop(0)
        self.updates.append({
            "sync_id": sync_id,
            "payload": encrypted_payload,
            "update_version": update_version,
            "last_updated": last_updated,
        })
        self.last_updated = f"2024-01-01T00:00:{len(self.updates):02d}.000Z"
        return {"lastUpdated": self.last_updated}


class FakeCipher(Cipher):
    """Reversible stand-in for payload encryption."""

    async def encrypt(self, plaintext):
        return f"enc:{plaintext}"

    async def decrypt(self, ciphertext):
        return ciphertext[len("enc:"):]


async def settle(rounds=20):
    """Let pending tasks on the loop run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep user and local config files and MARKSYNC_ variables out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ.keys()):
        if key.startswith("MARKSYNC_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config_module, "_config", None)
    yield


@pytest.fixture
def sync_config():
    """Engine configuration without startup delay."""
    return SyncConfig(startup_check_delay=0, update_check_period=300, app_version="1.5.0")


@pytest.fixture
def store():
    """Store holding a complete sync identity."""
    return MemoryStore({StoreKey.SYNC_INFO: SYNC_INFO})


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest_asyncio.fixture
async def engine(store, remote, provider, sync_config):
    """Engine with sync disabled."""
    engine = SyncEngine(store, remote, FakeCipher(), [provider],
                        status_sink=StatusBroadcaster(), config=sync_config)
    await engine.start()
    yield engine
    await engine.close()


@pytest_asyncio.fixture
async def enabled_engine(store, remote, provider, sync_config):
    """Engine restored with sync enabled."""
    await store.set(StoreKey.SYNC_ENABLED, True)
    await store.set(StoreKey.LAST_UPDATED, remote.last_updated)
    engine = SyncEngine(store, remote, FakeCipher(), [provider],
                        status_sink=StatusBroadcaster(), config=sync_config)
    await engine.start()
    yield engine
    await engine.close()

