"""Shared test fixtures for notevault."""

from __future__ import annotations

import socket
import threading
from pathlib import Path

import pytest

from notevault.mirror import LocalMirror
from notevault.server import NoteStore, start_server
from notevault.sync import RemoteVaultClient, SyncCoordinator


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Provide a temporary notevault home directory."""
    home = tmp_path / ".notevault"
    home.mkdir()
    return home


@pytest.fixture
def store(tmp_path: Path) -> NoteStore:
    """Provide an empty note store."""
    return NoteStore(tmp_path / "server")


@pytest.fixture
def api_server(store: NoteStore):
    """Run the notes API on a free port; yields its base URL."""
    server = start_server(store, host="127.0.0.1", port=0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield f"http://127.0.0.1:{server.server_address[1]}"

    server.shutdown()
    server.server_close()


@pytest.fixture
def dead_url() -> str:
    """A URL nothing is listening on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"http://127.0.0.1:{port}"


@pytest.fixture
def make_coordinator(tmp_path: Path):
    """Factory for coordinators with their own local mirror.

    Each call gets a separate mirror file, like a separate device.
    """
    created = []

    def _make(base_url: str, device: str = "device-a", **kwargs) -> SyncCoordinator:
        mirror = LocalMirror(tmp_path / device / "mirror.json")
        remote = RemoteVaultClient(base_url, timeout=2.0)
        kwargs.setdefault("debounce_seconds", 0.05)
        coordinator = SyncCoordinator(mirror, remote, **kwargs)
        created.append(coordinator)
        return coordinator

    yield _make

    for coordinator in created:
        coordinator.lock()
        coordinator.remote.close()
