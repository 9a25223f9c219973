"""
Ordered holding area for pending sync requests.

FIFO, except that a Cancel supersedes everything still waiting and that
retries go back in at the front. None of the methods await, so each call is
atomic with respect to other coroutines on the owning event loop.
"""
import asyncio
import logging
from collections import deque
from typing import Deque, Iterable, List, Optional

from marksync.request import SyncKind, SyncRequest
from marksync.utils import generate_unique_id

logger = logging.getLogger(__name__)


class SyncQueue:
    """Queue of sync requests owned by the background engine."""

    def __init__(self):
        self._items: Deque[SyncRequest] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def length(self) -> int:
        return len(self._items)

    def enqueue(self, request: SyncRequest, start_fresh: bool = False) -> asyncio.Future:
        """
        Append a request and return its completion handle.

        Args:
            request: The request to queue. An id is assigned if missing.
            start_fresh: Drop everything already waiting before appending.

        Returns:
            The request's completion future
        """
        if start_fresh or request.kind == SyncKind.CANCEL:
            self.clear()

        request.id = request.id or generate_unique_id()
        request.attach_futures(asyncio.get_running_loop())
        self._items.append(request)
        logger.info(f"Sync {request.id} ({request.kind.value}) queued")
        return request.completion

    def dequeue_next(self) -> Optional[SyncRequest]:
        """Pop the head of the queue, or None when empty."""
        if not self._items:
            return None
        return self._items.popleft()

    def requeue_front(self, requests: Iterable[SyncRequest]) -> None:
        """Put requests back at the head, keeping their relative order."""
        for request in reversed(list(requests)):
            self._items.appendleft(request)

    def clear(self) -> List[SyncRequest]:
        """
        Drop every waiting request.

        Dropped requests have their handles settled with SyncCancelledError.

        Returns:
            The dropped requests
        """
        dropped = list(self._items)
        self._items.clear()
        for request in dropped:
            request.supersede()
        if dropped:
            logger.debug(f"Cleared {len(dropped)} queued sync(s)")
        return dropped
