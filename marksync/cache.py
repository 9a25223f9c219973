"""
Local cache of the committed bookmark payload.

The encrypted form is persisted under StoreKey.BOOKMARKS; the plaintext
form is kept in memory and rebuilt by decrypting on first use.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from marksync.store import Store, StoreKey

logger = logging.getLogger(__name__)


class Cipher(ABC):
    """Symmetric encryption of the sync payload."""

    @abstractmethod
    async def encrypt(self, plaintext: str) -> str:
        pass

    @abstractmethod
    async def decrypt(self, ciphertext: str) -> str:
        pass


class BookmarkCache:
    """Plaintext + encrypted cache of the last committed bookmarks."""

    def __init__(self, store: Store, cipher: Cipher):
        self.store = store
        self.cipher = cipher
        self._bookmarks: Optional[Any] = None

    async def get_cached(self) -> Optional[Any]:
        """Cached bookmarks, decrypting the persisted copy if needed."""
        if self._bookmarks is None:
            encrypted = await self.store.get(StoreKey.BOOKMARKS)
            if encrypted:
                self._bookmarks = json.loads(await self.cipher.decrypt(encrypted))
        return self._bookmarks

    async def update(self, bookmarks: Any, encrypted: str) -> None:
        self._bookmarks = bookmarks
        await self.store.set(StoreKey.BOOKMARKS, encrypted)
        logger.debug(f"Cached bookmarks updated ({len(encrypted)} encrypted chars)")

    async def size_in_bytes(self) -> int:
        encrypted = await self.store.get(StoreKey.BOOKMARKS)
        return len(encrypted.encode("utf-8")) if encrypted else 0

    async def clear(self) -> None:
        self._bookmarks = None
        await self.store.remove(StoreKey.BOOKMARKS)
