"""CLI tests — push and status against a mocked server, listen against the app.

Learn: _client() is swapped for an AsyncClient over httpx.MockTransport,
so the HTTP commands run end-to-end without a live relay. `listen` needs
a real WebSocket peer, so _ws_connect() is swapped for TestClient.
"""

import time
from contextlib import asynccontextmanager
from urllib.parse import parse_qs, urlencode

import httpx
import pytest
from click.testing import CliRunner
from starlette.testclient import WebSocketDenialResponse

from pushall.cli import main as cli
from pushall.config import settings


@pytest.fixture()
def mock_server(monkeypatch):
    """Install a fake server; returns the list of captured requests."""
    requests: list[httpx.Request] = []
    responses: dict[str, httpx.Response] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses[request.url.path]

    def fake_client(url=None):
        return httpx.AsyncClient(
            base_url="http://relay.test", transport=httpx.MockTransport(handler)
        )

    monkeypatch.setattr(cli, "_client", fake_client)
    return requests, responses


def test_push_posts_form_and_reports_subscribers(mock_server):
    requests, responses = mock_server
    responses["/push"] = httpx.Response(
        200, json={"status": "ok", "token": "abc", "subscribers": 2}
    )

    result = CliRunner().invoke(
        cli.main, ["push", "abc", "backup done", "--pusher", "nas", "--level", "info"]
    )

    assert result.exit_code == 0, result.output
    assert "2 subscriber(s)" in result.output

    req = requests[0]
    assert req.method == "POST"
    assert req.url.params["token"] == "abc"
    form = parse_qs(req.content.decode())
    assert form == {"msg": ["backup done"], "pusher": ["nas"], "level": ["info"]}


def test_push_unknown_token_exits_nonzero(mock_server):
    _, responses = mock_server
    responses["/push"] = httpx.Response(404, json={"detail": "not found"})

    result = CliRunner().invoke(cli.main, ["push", "xyz", "hello"])
    assert result.exit_code == 1


def test_push_bad_request_exits_nonzero(mock_server):
    _, responses = mock_server
    responses["/push"] = httpx.Response(400, json={"detail": "msg must not be empty"})

    result = CliRunner().invoke(cli.main, ["push", "abc", " "])
    assert result.exit_code == 1


def test_status_prints_registry_size(mock_server):
    _, responses = mock_server
    responses["/health"] = httpx.Response(
        200,
        json={"status": "ok", "version": "0.1.0", "channels": 3, "subscribers": 5},
    )

    result = CliRunner().invoke(cli.main, ["status"])
    assert result.exit_code == 0, result.output
    assert "channels:    3" in result.output
    assert "subscribers: 5" in result.output


def test_server_url_from_env(monkeypatch):
    monkeypatch.setenv("PUSHALL_URL", "http://relay.example:9000/")
    assert cli._server_url() == "http://relay.example:9000"
    assert cli._server_url("http://other:1") == "http://other:1"


# ---------------------------------------------------------------------------
# pushall listen, against the real app through TestClient
# ---------------------------------------------------------------------------


@pytest.fixture()
def relay(ws_client, monkeypatch):
    """Route the CLI's WebSocket through TestClient.

    `on_connect` runs once the "connected" frame has been read, i.e. once
    the session is subscribed, so pushes made there are never lost.
    """
    hooks = {"on_connect": lambda: None}

    async def frames(ws):
        yield "connected"
        while True:
            message = ws.receive()
            if message["type"] == "websocket.close":
                return
            if message.get("text") is not None:
                yield message["text"]
            else:
                yield message["bytes"]

    @asynccontextmanager
    async def fake_connect(url, token):
        try:
            with ws_client.websocket_connect(f"/ws?{urlencode({'token': token})}") as ws:
                assert ws.receive_text() == "connected"
                hooks["on_connect"]()
                yield frames(ws)
        except WebSocketDenialResponse as e:
            raise cli.ConnectRejected(e.status_code) from e

    monkeypatch.setattr(cli, "_ws_connect", fake_connect)
    return ws_client, hooks


def test_listen_prints_pushed_notifications(relay, monkeypatch):
    ws_client, hooks = relay
    monkeypatch.setattr(settings, "heartbeat_interval_seconds", 0.02)

    def push_two():
        time.sleep(0.1)  # let a few heartbeats through first
        ws_client.post("/push", params={"token": "abc"},
                       data={"msg": "backup done", "pusher": "nas", "type": "job",
                             "level": "success", "date": "2026-01-02 03:04"})
        ws_client.post("/push", params={"token": "abc"}, data={"msg": "plain"})

    hooks["on_connect"] = push_two
    result = CliRunner().invoke(cli.main, ["listen", "abc", "--count", "2"])

    assert result.exit_code == 0, result.output
    lines = result.stdout.splitlines()
    assert lines == [
        "[success] nas job @2026-01-02 03:04: backup done",
        "[info] Notification: plain",
    ]


def test_listen_json_prints_raw_payload(relay):
    ws_client, hooks = relay
    hooks["on_connect"] = lambda: ws_client.post(
        "/push", params={"token": "abc"}, data={"msg": "hi", "pusher": "svc1"}
    )

    result = CliRunner().invoke(cli.main, ["listen", "abc", "-n", "1", "--json"])

    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == (
        '{"pusher":"svc1","msg":"hi","type":null,"level":null,"date":null}'
    )


def test_listen_blank_token_exits_nonzero(relay):
    result = CliRunner().invoke(cli.main, ["listen", "  "])
    assert result.exit_code == 1
    assert "token is required" in result.stderr


def test_ws_url_follows_server_scheme():
    assert cli._ws_url("http://relay:3000", "a b") == "ws://relay:3000/ws?token=a+b"
    assert cli._ws_url("https://relay.example/", "abc") == "wss://relay.example/ws?token=abc"


def test_format_notification_without_title_fields():
    assert cli.format_notification({"msg": "hello"}) == "[info] Notification: hello"
