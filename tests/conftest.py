"""Test fixtures — a fresh channel registry per test.

Learn: Two kinds of clients are used:

1. `client`: httpx.AsyncClient over ASGITransport. Fast, async, but it
   does not run the app lifespan, so the fixture initializes the global
   registry itself.
2. `ws_client`: Starlette's TestClient used as a context manager. It runs
   the lifespan (logging, registry) and keeps one event loop for the whole
   test, which WebSocket sessions and POST /push must share.

Log files always go to tmp_path so tests never write into the repo.
"""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from pushall.config import settings
from pushall.main import app
from pushall.realtime.registry import close_registry, init_registry


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    """Point the log file at tmp_path and restore settings after each test."""
    monkeypatch.setattr(settings, "log_file", str(tmp_path / "push-all-server.log"))
    monkeypatch.setattr(settings, "heartbeat_interval_seconds", 30.0)
    monkeypatch.setattr(settings, "heartbeat_frames", True)
    monkeypatch.setattr(settings, "channel_idle_ttl_seconds", None)


@pytest_asyncio.fixture()
async def registry():
    """Fresh global registry, closed after the test."""
    reg = init_registry(capacity=settings.channel_capacity)
    yield reg
    await close_registry()


@pytest_asyncio.fixture()
async def client(registry):
    """HTTP client bound to the app, sharing the `registry` fixture."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def ws_client():
    """Sync client that runs the full lifespan and supports websocket_connect()."""
    with TestClient(app) as tc:
        yield tc
