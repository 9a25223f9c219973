"""
Sync request records.

A SyncRequest is one unit of enqueued work. Its two futures are created by
the queue at enqueue time and settled by the processor:

- processed: resolves with the payload provider's data as soon as provider
  processing finishes, before the (slower) remote commit.
- completion: settles exactly once with the final outcome of the commit.

Requeueing keeps the same record, so whoever awaits these futures sees the
eventual outcome no matter how many times the request was retried.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from marksync.errors import SyncCancelledError


class SyncKind(Enum):
    """Kinds of sync request."""
    LOCAL = "local"      # push local changes
    REMOTE = "remote"    # pull and merge remote changes
    UPGRADE = "upgrade"  # schema/version migration sync
    CANCEL = "cancel"    # abort current processing


@dataclass
class ProviderResult:
    """What a provider returns from process_sync."""
    data: Any = None
    update_remote: bool = False


def _consume_outcome(future: asyncio.Future) -> None:
    # Outcomes are also reported through the engine, so an unawaited
    # future must not warn about a never-retrieved exception.
    if not future.cancelled():
        future.exception()


@dataclass(eq=False)
class SyncRequest:
    """A pending sync operation."""
    kind: SyncKind
    id: Optional[str] = None
    payload: Any = None
    change_descriptor: Optional[Dict[str, Any]] = None
    completion: Optional[asyncio.Future] = field(default=None, repr=False)
    processed: Optional[asyncio.Future] = field(default=None, repr=False)
    chained: bool = field(default=False, repr=False)

    def __post_init__(self):
        if isinstance(self.kind, str):
            self.kind = SyncKind(self.kind)

    @property
    def enables_sync(self) -> bool:
        """Whether completing this request while disabled turns sync on."""
        if self.kind == SyncKind.LOCAL:
            return self.payload is None
        return self.kind in (SyncKind.REMOTE, SyncKind.UPGRADE)

    @property
    def is_settled(self) -> bool:
        return self.completion is not None and self.completion.done()

    def attach_futures(self, loop: asyncio.AbstractEventLoop) -> None:
        """Create the completion handles if this request does not have them yet."""
        if self.completion is None:
            self.completion = loop.create_future()
            self.completion.add_done_callback(_consume_outcome)
        if self.processed is None:
            self.processed = loop.create_future()
            self.processed.add_done_callback(_consume_outcome)

    def mark_processed(self, data: Any) -> None:
        if self.processed is not None and not self.processed.done():
            self.processed.set_result(data)

    def resolve(self, result: Any = None) -> None:
        self.mark_processed(result)
        if self.completion is not None and not self.completion.done():
            self.completion.set_result(result)

    def fail(self, error: BaseException) -> None:
        if self.processed is not None and not self.processed.done():
            self.processed.set_exception(error)
        if self.completion is not None and not self.completion.done():
            self.completion.set_exception(error)

    def supersede(self) -> None:
        """Settle a request that was dropped from the queue unprocessed."""
        self.fail(SyncCancelledError())

    def unchain(self) -> None:
        """Forget a payload borrowed from an earlier request in the batch."""
        if self.chained:
            self.payload = None
            self.chained = False

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form for the message contract (no futures)."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "payload": None if self.chained else self.payload,
            "change_descriptor": self.change_descriptor,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncRequest":
        return cls(
            kind=SyncKind(data["kind"]),
            id=data.get("id"),
            payload=data.get("payload"),
            change_descriptor=data.get("change_descriptor"),
        )
