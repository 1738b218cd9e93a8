"""Download-client side of the import pass: is a torrent done, and where is it."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import structlog

# Deluge states that mean the payload is complete on disk
SEEDING_STATE = "Seeding"
PAUSED_STATE = "Paused"


@dataclass(frozen=True)
class DownloadStatus:
    """Status of one torrent as reported by the download client."""

    torrent_id: str
    name: str
    state: str
    progress: float
    download_location: str

    @property
    def is_complete(self) -> bool:
        """Seeding, or paused after reaching 100%."""
        if self.state == SEEDING_STATE:
            return True
        return self.state == PAUSED_STATE and self.progress >= 100

    @property
    def content_path(self) -> Path:
        """The downloaded file or directory: ``download_location/name``."""
        return Path(self.download_location) / self.name


class DownloadClientError(Exception):
    """The download client could not be reached or rejected a request."""


class DownloadClient(ABC):
    """Abstract base class for download clients."""

    def __init__(self, name: str) -> None:
        """Initialize download client.

        Args:
            name: Name of the client (for logging)
        """
        self.name = name
        self.logger = structlog.get_logger(f"mangashelf.clients.{name.lower()}")

    @abstractmethod
    async def get_status(self, torrent_id: str) -> DownloadStatus | None:
        """Look up one torrent.

        Args:
            torrent_id: Torrent hash

        Returns:
            DownloadStatus, or None if the client does not know the torrent
        """

    async def aclose(self) -> None:
        """Release client resources."""


class DelugeClient(DownloadClient):
    """Deluge Web UI JSON-RPC client (status lookups only)."""

    STATUS_FIELDS = ["name", "state", "progress", "download_location", "total_size"]

    def __init__(
        self,
        url: str,
        password: str,
        name: str = "Deluge",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Deluge client.

        Args:
            url: Deluge Web UI base URL (e.g., http://deluge:8112)
            password: Web UI password
            name: Name of the client (for logging)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        super().__init__(name)
        self.url = url.rstrip("/")
        self.password = password
        self._rpc_id = 0
        # The session cookie set by auth.login is kept by the client's cookie jar
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def __aenter__(self) -> DelugeClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _rpc(self, method: str, params: list[Any] | None = None) -> Any:
        self._rpc_id += 1
        try:
            response = await self.client.post(
                f"{self.url}/json",
                json={"method": method, "params": params or [], "id": self._rpc_id},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DownloadClientError(f"Deluge request {method} failed: {exc}") from exc

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise DownloadClientError(f"Deluge RPC error: {message}")
        return data.get("result")

    async def _ensure_auth(self) -> None:
        try:
            if await self._rpc("auth.check_session"):
                return
        except DownloadClientError:
            self.logger.debug("Deluge session check failed, logging in again")

        if not await self._rpc("auth.login", [self.password]):
            raise DownloadClientError("Deluge authentication failed")

        if await self._rpc("web.connected"):
            return
        hosts = await self._rpc("web.get_hosts") or []
        if hosts:
            await self._rpc("web.connect", [hosts[0][0]])

    async def get_status(self, torrent_id: str) -> DownloadStatus | None:
        await self._ensure_auth()
        result = await self._rpc("core.get_torrent_status", [torrent_id, self.STATUS_FIELDS])
        if not result:
            return None

        return DownloadStatus(
            torrent_id=torrent_id,
            name=str(result.get("name", "")),
            state=str(result.get("state", "")),
            progress=float(result.get("progress") or 0.0),
            download_location=str(result.get("download_location", "")),
        )
