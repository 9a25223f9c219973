"""
Cross-context coordination.

Foreground contexts (popups, option pages, the CLI) never hold queue state.
They send plain-data messages to the SyncCoordinator living next to the
engine in the background owner and await the response. Status changes are
pushed back and mirrored read-only on the foreground side.

Message format:
    {"command": "submit_sync", "request": {...}, "run_immediately": true}

Response format:
    {"ok": true, "result": ...}
    {"ok": false, "error": {"kind": "...", "message": "...", "soft": false}}
"""
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from marksync.engine import SyncEngine
from marksync.errors import SyncError, UnknownCommandError, error_from_dict, error_to_dict
from marksync.request import SyncKind, SyncRequest
from marksync.status import StatusBroadcaster, SyncStatus

logger = logging.getLogger(__name__)


class MessageCommand(Enum):
    """Commands accepted by the coordinator."""
    SUBMIT_SYNC = "submit_sync"
    RESTORE_BOOKMARKS = "restore_bookmarks"
    EXECUTE_SYNC = "execute_sync"
    QUERY_CURRENT_SYNC = "query_current_sync"
    QUERY_QUEUE_LENGTH = "query_queue_length"
    QUERY_STATUS = "query_status"
    REQUEST_DISABLE = "request_disable"
    REQUEST_ENABLE = "request_enable"


class SyncCoordinator:
    """Background-side message handler in front of a SyncEngine."""

    def __init__(self, engine: SyncEngine, broadcaster: Optional[StatusBroadcaster] = None):
        self.engine = engine
        self.broadcaster = broadcaster or engine.status_sink
        self._handlers = {
            MessageCommand.SUBMIT_SYNC: self._submit_sync,
            MessageCommand.RESTORE_BOOKMARKS: self._restore_bookmarks,
            MessageCommand.EXECUTE_SYNC: self._execute_sync,
            MessageCommand.QUERY_CURRENT_SYNC: self._query_current_sync,
            MessageCommand.QUERY_QUEUE_LENGTH: self._query_queue_length,
            MessageCommand.QUERY_STATUS: self._query_status,
            MessageCommand.REQUEST_DISABLE: self._request_disable,
            MessageCommand.REQUEST_ENABLE: self._request_enable,
        }

    async def handle(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Dispatch one message and build its response."""
        try:
            command = MessageCommand(message.get("command"))
        except ValueError:
            return self._error_response(UnknownCommandError(f"Unknown command: {message.get('command')}"))

        try:
            result = await self._handlers[command](message)
        except SyncError as e:
            return self._error_response(e)
        except Exception as e:
            logger.error(f"Unexpected error handling {command.value}: {e}", exc_info=True)
            return self._error_response(e)

        return {"ok": True, "result": result}

    @staticmethod
    def _error_response(error: BaseException) -> Dict[str, Any]:
        return {"ok": False, "error": error_to_dict(error)}

    def add_status_listener(self, listener: Callable[[SyncStatus], None]) -> None:
        self.broadcaster.add_listener(listener)

    def remove_status_listener(self, listener: Callable[[SyncStatus], None]) -> bool:
        return self.broadcaster.remove_listener(listener)

    # Handlers

    async def _submit_sync(self, message: Dict[str, Any]) -> Any:
        request = SyncRequest.from_dict(message["request"])
        if not message.get("run_immediately", True):
            self.engine.enqueue(request)
            return {"id": request.id}
        return await self.engine.queue_sync(request)

    async def _restore_bookmarks(self, message: Dict[str, Any]) -> Any:
        request = SyncRequest(kind=SyncKind.LOCAL, payload=message["bookmarks"])
        return await self.engine.queue_sync(request)

    async def _execute_sync(self, message: Dict[str, Any]) -> None:
        await self.engine.execute_sync(background=message.get("background", False))

    async def _query_current_sync(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        current = self.engine.current_sync
        return current.to_dict() if current else None

    async def _query_queue_length(self, message: Dict[str, Any]) -> int:
        return self.engine.queue_length()

    async def _query_status(self, message: Dict[str, Any]) -> Dict[str, Any]:
        return self.engine.status_snapshot()

    async def _request_disable(self, message: Dict[str, Any]) -> None:
        await self.engine.disable()

    async def _request_enable(self, message: Dict[str, Any]) -> None:
        await self.engine.enable()


def _plain(data: Any) -> Any:
    return json.loads(json.dumps(data))


class LocalChannel:
    """
    In-process stand-in for the browser's message port.

    Every message, response and status push is serialized to JSON and back,
    so nothing but plain data crosses between the contexts.
    """

    def __init__(self, coordinator: SyncCoordinator):
        self.coordinator = coordinator
        self._subscriptions: List[Callable[[SyncStatus], None]] = []

    async def send(self, message: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.coordinator.handle(_plain(message))
        return _plain(response)

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[SyncStatus], None]:
        """Push status values to listener. Returns a handle for unsubscribe()."""
        def push(status: SyncStatus):
            listener(_plain(status.value))

        self._subscriptions.append(push)
        self.coordinator.add_status_listener(push)
        return push

    def unsubscribe(self, handle: Callable[[SyncStatus], None]) -> None:
        if handle in self._subscriptions:
            self._subscriptions.remove(handle)
            self.coordinator.remove_status_listener(handle)

    def close(self) -> None:
        for handle in list(self._subscriptions):
            self.unsubscribe(handle)


class StatusMirror:
    """Foreground copy of the background status. Replaced on every push."""

    def __init__(self):
        self._status: Optional[SyncStatus] = None

    @property
    def status(self) -> Optional[SyncStatus]:
        return self._status

    def _receive(self, value: str) -> None:
        self._status = SyncStatus(value)


class ForegroundClient:
    """
    Foreground view of the engine.

    Failures come back as the same SyncError subclasses the engine raised.
    """

    def __init__(self, channel: LocalChannel):
        self.channel = channel
        self.status = StatusMirror()
        self._subscription = channel.subscribe(self.status._receive)

    async def _call(self, command: MessageCommand, **params) -> Any:
        response = await self.channel.send({"command": command.value, **params})
        if not response.get("ok"):
            raise error_from_dict(response.get("error") or {})
        return response.get("result")

    async def submit_sync(self, request: SyncRequest, run_immediately: bool = True) -> Any:
        return await self._call(MessageCommand.SUBMIT_SYNC, request=request.to_dict(),
                                run_immediately=run_immediately)

    async def restore_bookmarks(self, bookmarks: Any) -> Any:
        return await self._call(MessageCommand.RESTORE_BOOKMARKS, bookmarks=bookmarks)

    async def execute_sync(self) -> None:
        await self._call(MessageCommand.EXECUTE_SYNC)

    async def get_current_sync(self) -> Optional[SyncRequest]:
        data = await self._call(MessageCommand.QUERY_CURRENT_SYNC)
        return SyncRequest.from_dict(data) if data else None

    async def get_queue_length(self) -> int:
        return await self._call(MessageCommand.QUERY_QUEUE_LENGTH)

    async def get_status(self) -> Dict[str, Any]:
        return await self._call(MessageCommand.QUERY_STATUS)

    async def disable_sync(self) -> None:
        await self._call(MessageCommand.REQUEST_DISABLE)

    async def enable_sync(self) -> None:
        await self._call(MessageCommand.REQUEST_ENABLE)

    def close(self) -> None:
        self.channel.unsubscribe(self._subscription)
