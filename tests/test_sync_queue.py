"""Tests for the sync queue and request records."""
import pytest

from marksync.errors import SyncCancelledError
from marksync.request import SyncKind, SyncRequest
from marksync.sync_queue import SyncQueue


class TestSyncRequest:
    """Tests for SyncRequest."""

    def test_kind_accepts_string(self):
        """Kinds arriving as plain strings are converted."""
        request = SyncRequest(kind="remote")
        assert request.kind == SyncKind.REMOTE

    def test_enabling_requests(self):
        """Local without payload, Remote and Upgrade enable sync."""
        assert SyncRequest(kind=SyncKind.LOCAL).enables_sync is True
        assert SyncRequest(kind=SyncKind.REMOTE).enables_sync is True
        assert SyncRequest(kind=SyncKind.UPGRADE).enables_sync is True
        assert SyncRequest(kind=SyncKind.LOCAL, payload=["a"]).enables_sync is False
        assert SyncRequest(kind=SyncKind.CANCEL).enables_sync is False

    def test_to_dict_has_no_futures(self):
        """The plain form carries data only."""
        request = SyncRequest(kind=SyncKind.LOCAL, id="abc", payload=[1],
                              change_descriptor={"type": "create"})
        assert request.to_dict() == {
            "id": "abc",
            "kind": "local",
            "payload": [1],
            "change_descriptor": {"type": "create"},
        }

    def test_from_dict(self):
        request = SyncRequest.from_dict({"kind": "upgrade", "id": "xyz"})
        assert request.kind == SyncKind.UPGRADE
        assert request.id == "xyz"
        assert request.payload is None
        assert request.completion is None

    def test_chained_payload_not_exported(self):
        """A payload borrowed within a batch is not part of the request's plain form."""
        request = SyncRequest(kind=SyncKind.REMOTE, payload=["borrowed"], chained=True)
        assert request.to_dict()["payload"] is None

        request.unchain()
        assert request.payload is None
        assert request.chained is False

    @pytest.mark.asyncio
    async def test_resolve_settles_once(self):
        """Later outcomes are ignored once the request has settled."""
        queue = SyncQueue()
        request = SyncRequest(kind=SyncKind.LOCAL)
        completion = queue.enqueue(request)

        request.resolve(["done"])
        request.fail(RuntimeError("late"))
        request.supersede()

        assert completion.result() == ["done"]
        assert request.processed.result() == ["done"]
        assert request.is_settled


class TestSyncQueue:
    """Tests for SyncQueue."""

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        queue = SyncQueue()
        first = SyncRequest(kind=SyncKind.LOCAL)
        second = SyncRequest(kind=SyncKind.REMOTE)
        queue.enqueue(first)
        queue.enqueue(second)

        assert len(queue) == 2
        assert queue.length() == 2
        assert queue.dequeue_next() is first
        assert queue.dequeue_next() is second
        assert queue.dequeue_next() is None
        assert not queue

    @pytest.mark.asyncio
    async def test_enqueue_assigns_id_and_futures(self):
        queue = SyncQueue()
        request = SyncRequest(kind=SyncKind.LOCAL)

        completion = queue.enqueue(request)

        assert len(request.id) == 9
        assert completion is request.completion
        assert request.processed is not None
        assert not completion.done()

    @pytest.mark.asyncio
    async def test_enqueue_keeps_existing_id(self):
        queue = SyncQueue()
        request = SyncRequest(kind=SyncKind.LOCAL, id="given")
        queue.enqueue(request)
        assert request.id == "given"

    @pytest.mark.asyncio
    async def test_cancel_replaces_queue(self):
        """Enqueueing Cancel drops everything waiting."""
        queue = SyncQueue()
        waiting = [queue.enqueue(SyncRequest(kind=SyncKind.LOCAL)) for _ in range(3)]
        cancel = SyncRequest(kind=SyncKind.CANCEL)

        queue.enqueue(cancel)

        assert list(queue) == [cancel]
        for completion in waiting:
            with pytest.raises(SyncCancelledError):
                await completion

    @pytest.mark.asyncio
    async def test_start_fresh_drops_waiting_requests(self):
        queue = SyncQueue()
        old = queue.enqueue(SyncRequest(kind=SyncKind.LOCAL))
        new = SyncRequest(kind=SyncKind.LOCAL)

        queue.enqueue(new, start_fresh=True)

        assert list(queue) == [new]
        assert isinstance(old.exception(), SyncCancelledError)

    @pytest.mark.asyncio
    async def test_requeue_front_keeps_order(self):
        """Retried requests go ahead of anything queued since."""
        queue = SyncQueue()
        a, b, c = (SyncRequest(kind=SyncKind.REMOTE) for _ in range(3))
        queue.enqueue(c)

        queue.requeue_front([a, b])

        assert list(queue) == [a, b, c]

    @pytest.mark.asyncio
    async def test_requeue_keeps_futures(self):
        queue = SyncQueue()
        request = SyncRequest(kind=SyncKind.REMOTE)
        completion = queue.enqueue(request)
        queue.dequeue_next()

        queue.requeue_front([request])

        assert queue.dequeue_next() is request
        assert request.completion is completion
        assert not completion.done()

    @pytest.mark.asyncio
    async def test_clear_returns_dropped(self):
        queue = SyncQueue()
        requests = [SyncRequest(kind=SyncKind.LOCAL) for _ in range(2)]
        for request in requests:
            queue.enqueue(request)

        dropped = queue.clear()

        assert dropped == requests
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_unawaited_failure_does_not_warn(self, caplog):
        """Dropped requests nobody awaits don't log 'exception was never retrieved'."""
        queue = SyncQueue()
        queue.enqueue(SyncRequest(kind=SyncKind.LOCAL))
        queue.clear()
        assert "never retrieved" not in caplog.text
