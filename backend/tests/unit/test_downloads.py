"""Tests for the Deluge download client."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from mangashelf.core.importing.downloads import (
    DelugeClient,
    DownloadClientError,
    DownloadStatus,
)

TORRENT_STATUS = {
    "name": "Berserk v01",
    "state": "Seeding",
    "progress": 100.0,
    "download_location": "/downloads/manga",
    "total_size": 123456,
}


def deluge_transport(
    results: dict[str, Any],
    calls: list[tuple[str, list[Any]]],
) -> httpx.MockTransport:
    """Mock Deluge Web UI answering each RPC method from ``results``.

    An Exception result becomes an RPC error.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/json"
        body = json.loads(request.content)
        method, params = body["method"], body["params"]
        calls.append((method, params))

        result = results.get(method)
        if isinstance(result, Exception):
            return httpx.Response(
                200,
                json={"result": None, "error": {"message": str(result), "code": 2}, "id": body["id"]},
            )
        return httpx.Response(200, json={"result": result, "error": None, "id": body["id"]})

    return httpx.MockTransport(handler)


def make_client(results: dict[str, Any]) -> tuple[DelugeClient, list[tuple[str, list[Any]]]]:
    calls: list[tuple[str, list[Any]]] = []
    client = DelugeClient(
        "http://deluge:8112/",
        "secret",
        transport=deluge_transport(results, calls),
    )
    return client, calls


@pytest.mark.asyncio
async def test_get_status_logs_in_and_reads_torrent() -> None:
    """Test a status lookup authenticates first, then asks for the torrent."""
    client, calls = make_client(
        {
            "auth.check_session": False,
            "auth.login": True,
            "web.connected": True,
            "core.get_torrent_status": TORRENT_STATUS,
        }
    )

    async with client:
        status = await client.get_status("abc123")

    assert status == DownloadStatus(
        torrent_id="abc123",
        name="Berserk v01",
        state="Seeding",
        progress=100.0,
        download_location="/downloads/manga",
    )
    assert status.is_complete
    assert status.content_path == Path("/downloads/manga/Berserk v01")
    assert [method for method, _ in calls] == [
        "auth.check_session",
        "auth.login",
        "web.connected",
        "core.get_torrent_status",
    ]
    assert calls[1][1] == ["secret"]
    assert calls[3][1] == ["abc123", DelugeClient.STATUS_FIELDS]


@pytest.mark.asyncio
async def test_get_status_reuses_session() -> None:
    """Test a valid session skips the login."""
    client, calls = make_client(
        {"auth.check_session": True, "core.get_torrent_status": TORRENT_STATUS}
    )

    async with client:
        await client.get_status("abc123")

    assert [method for method, _ in calls] == ["auth.check_session", "core.get_torrent_status"]


@pytest.mark.asyncio
async def test_get_status_connects_to_first_host() -> None:
    """Test the Web UI is connected to a daemon when it is not yet."""
    client, calls = make_client(
        {
            "auth.check_session": False,
            "auth.login": True,
            "web.connected": False,
            "web.get_hosts": [["host-1", "127.0.0.1", 58846, "Online"]],
            "web.connect": None,
            "core.get_torrent_status": TORRENT_STATUS,
        }
    )

    async with client:
        await client.get_status("abc123")

    assert ("web.connect", ["host-1"]) in calls


@pytest.mark.asyncio
async def test_get_status_unknown_torrent() -> None:
    """Test an unknown torrent gives None."""
    client, _ = make_client({"auth.check_session": True, "core.get_torrent_status": {}})

    async with client:
        assert await client.get_status("missing") is None


@pytest.mark.asyncio
async def test_login_rejected() -> None:
    """Test a wrong password raises DownloadClientError."""
    client, _ = make_client({"auth.check_session": False, "auth.login": False})

    async with client:
        with pytest.raises(DownloadClientError, match="authentication failed"):
            await client.get_status("abc123")


@pytest.mark.asyncio
async def test_rpc_error() -> None:
    """Test an RPC error from Deluge raises DownloadClientError."""
    client, _ = make_client(
        {
            "auth.check_session": True,
            "core.get_torrent_status": RuntimeError("Unknown method"),
        }
    )

    async with client:
        with pytest.raises(DownloadClientError, match="Unknown method"):
            await client.get_status("abc123")


@pytest.mark.asyncio
async def test_http_error() -> None:
    """Test an unreachable or failing Web UI raises DownloadClientError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="Internal Server Error")

    client = DelugeClient("http://deluge:8112", "secret", transport=httpx.MockTransport(handler))

    async with client:
        with pytest.raises(DownloadClientError):
            await client.get_status("abc123")


@pytest.mark.parametrize(
    ("state", "progress", "complete"),
    [
        ("Seeding", 100.0, True),
        ("Seeding", 99.0, True),
        ("Paused", 100.0, True),
        ("Paused", 42.0, False),
        ("Downloading", 100.0, False),
        ("Error", 0.0, False),
    ],
)
def test_download_status_is_complete(state: str, progress: float, complete: bool) -> None:
    """Test which torrent states count as a finished download."""
    status = DownloadStatus(
        torrent_id="abc123",
        name="Berserk v01",
        state=state,
        progress=progress,
        download_location="/downloads",
    )
    assert status.is_complete is complete
