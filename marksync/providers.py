"""
Sync provider interface.

A provider knows how to reconcile one category of data between local and
remote state. The engine calls providers; providers never call back into
the queue.

Key features:
- Providers are identified by metadata name, not by type introspection
- Explicit registry that keeps the order providers were given in
- Instantiable registry (not global) for better testing
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Optional
import logging

from marksync.request import ProviderResult, SyncRequest

logger = logging.getLogger(__name__)

# Name of the provider whose data is the encrypted remote payload
BOOKMARKS_PROVIDER = "bookmarks"


@dataclass
class ProviderMetadata:
    """Metadata for a sync provider."""
    name: str
    version: str = "1.0.0"
    description: str = ""


class SyncProvider(ABC):
    """Base class for sync providers."""

    @property
    @abstractmethod
    def metadata(self) -> ProviderMetadata:
        """Return provider metadata."""
        pass

    @property
    def name(self) -> str:
        return self.metadata.name

    async def enable(self) -> None:
        """Called when sync is enabled."""
        pass

    async def disable(self) -> None:
        """Called when sync is disabled or the current processing is cancelled."""
        pass

    @abstractmethod
    async def process_sync(self, request: SyncRequest) -> ProviderResult:
        """Reconcile local and remote state for one request."""
        pass

    async def handle_update_remote_failed(self, error: BaseException, last_data: Any,
                                          request: Optional[SyncRequest]) -> None:
        """
        Called when the remote write for a batch failed.

        Args:
            error: The error raised by the remote write
            last_data: The data this provider contributed to the batch
            request: The request being processed when the write failed
        """
        pass


class ProviderRegistry:
    """
    Ordered collection of sync providers keyed by name.

    Providers run in the order they were given. Registering a provider
    under a name already in use replaces the old one in place.
    """

    def __init__(self, providers: Optional[Iterable[SyncProvider]] = None):
        self._providers: List[SyncProvider] = []
        for provider in providers or []:
            self.register(provider)

    def __iter__(self) -> Iterator[SyncProvider]:
        return iter(list(self._providers))

    def __len__(self) -> int:
        return len(self._providers)

    def register(self, provider: SyncProvider) -> None:
        for index, existing in enumerate(self._providers):
            if existing.name == provider.name:
                logger.warning(f"Provider {provider.name} already registered, replacing")
                self._providers[index] = provider
                return
        self._providers.append(provider)
        logger.debug(f"Registered sync provider: {provider.name}")
