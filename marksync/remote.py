"""
Remote sync service client.

RemoteService is the contract the engine depends on. ApiClient implements
it over HTTP with aiohttp and translates transport failures and error
statuses into the sync error taxonomy.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from marksync.config import get_config
from marksync.errors import (
    ConnectivityError,
    DataDriftError,
    RateLimitedError,
    RemoteSyncNotFoundError,
    SyncFailedError,
)

logger = logging.getLogger(__name__)


class RemoteService(ABC):
    """What the engine needs from the remote sync service."""

    @abstractmethod
    async def get_last_updated(self, sync_id: str) -> str:
        """Timestamp of the last remote write."""
        pass

    @abstractmethod
    async def get_version(self, sync_id: str) -> Optional[str]:
        """Data version the remote copy was written with."""
        pass

    @abstractmethod
    async def update_bookmarks(self, sync_id: str, encrypted_payload: str,
                               update_version: bool = False,
                               last_updated: Optional[str] = None) -> Dict[str, Any]:
        """
        Replace the remote payload.

        Returns:
            Response containing the new 'lastUpdated' timestamp
        """
        pass


class ApiClient(RemoteService):
    """
    HTTP client for the bookmarks sync API.

    Endpoints:
        GET  {service_url}/bookmarks/{id}/lastUpdated
        GET  {service_url}/bookmarks/{id}/version
        PUT  {service_url}/bookmarks/{id}
    """

    def __init__(self, service_url: Optional[str] = None, app_version: Optional[str] = None,
                 timeout: Optional[float] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        config = get_config()
        self.service_url = (service_url or config.service_url).rstrip("/")
        self.app_version = app_version or config.app_version
        self.timeout = timeout if timeout is not None else config.request_timeout
        self.user_agent = config.user_agent
        self.verify_ssl = config.verify_ssl
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={'User-Agent': self.user_agent},
                connector=aiohttp.TCPConnector(ssl=None if self.verify_ssl else False),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.service_url}{path}"
        try:
            async with self._get_session().request(
                method,
                url,
                json=json,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status >= 400:
                    raise self._error_for_status(response.status, url)
                return await response.json()
        except asyncio.TimeoutError as e:
            raise ConnectivityError(f"Request to {url} timed out", cause=e) from e
        except aiohttp.ClientConnectionError as e:
            raise ConnectivityError(f"Could not connect to {self.service_url}", cause=e) from e

    @staticmethod
    def _error_for_status(status: int, url: str):
        if status == 404:
            return RemoteSyncNotFoundError()
        if status == 409:
            return DataDriftError()
        if status == 429:
            return RateLimitedError()
        if status in (502, 503, 504):
            return ConnectivityError(f"Service unavailable ({status})")
        return SyncFailedError(f"Request to {url} failed with status {status}")

    async def get_last_updated(self, sync_id: str) -> str:
        response = await self._request("GET", f"/bookmarks/{sync_id}/lastUpdated")
        return response.get("lastUpdated")

    async def get_version(self, sync_id: str) -> Optional[str]:
        response = await self._request("GET", f"/bookmarks/{sync_id}/version")
        return response.get("version")

    async def update_bookmarks(self, sync_id: str, encrypted_payload: str,
                               update_version: bool = False,
                               last_updated: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"bookmarks": encrypted_payload}
        if last_updated:
            body["lastUpdated"] = last_updated
        if update_version:
            body["version"] = self.app_version
        logger.debug(f"Updating remote bookmarks for sync {sync_id}")
        return await self._request("PUT", f"/bookmarks/{sync_id}", json=body)
