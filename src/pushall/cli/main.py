"""pushall CLI — run the relay, or push to it from scripts and cron jobs.

Usage:
    pushall serve                                  # Run the relay on 0.0.0.0:3000
    pushall serve --port 8080
    pushall push abc "backup finished"             # Push to everyone on token abc
    pushall push abc "disk 91%" --level warning --pusher nas
    pushall listen abc                             # Print pushes to abc as they arrive
    pushall listen abc --count 1 --json
    pushall status                                 # Channels / subscribers
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlencode

import click
import httpx

from pushall import __version__
from pushall.realtime.session import CONNECTED_FRAME

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_URL = "http://localhost:3000"


def _server_url(url: Optional[str] = None) -> str:
    return (url or os.environ.get("PUSHALL_URL", DEFAULT_URL)).rstrip("/")


def _client(url: Optional[str] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at a pushall server."""
    return httpx.AsyncClient(base_url=_server_url(url), timeout=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Falls back to a worker thread when a loop is already running
    (e.g. CliRunner invoked from an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="pushall")
def main():
    """pushall — fan out push notifications to WebSocket clients by token."""


# ---------------------------------------------------------------------------
# pushall serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", help="Bind address (default: PUSHALL_HOST or 0.0.0.0)")
@click.option("--port", type=int, help="Bind port (default: PUSHALL_PORT or 3000)")
def serve(host: Optional[str], port: Optional[int]):
    """Run the relay server."""
    import uvicorn

    from pushall.config import settings

    uvicorn.run(
        "pushall.main:app",
        host=host or settings.host,
        port=port or settings.port,
        ws_ping_interval=settings.heartbeat_interval_seconds,
        ws_ping_timeout=settings.heartbeat_interval_seconds,
        log_level=settings.log_level.lower(),
    )


# ---------------------------------------------------------------------------
# pushall push
# ---------------------------------------------------------------------------


@main.command()
@click.argument("token")
@click.argument("msg")
@click.option("--pusher", "-p", help="Sender name shown to clients")
@click.option("--type", "-t", "type_", help="Message category")
@click.option("--level", "-l", help="info, success, warning, critical, ...")
@click.option("--date", "-d", help="Timestamp string passed through to clients")
@click.option("--url", help=f"Server URL (default: PUSHALL_URL or {DEFAULT_URL})")
def push(token: str, msg: str, pusher: Optional[str], type_: Optional[str],
         level: Optional[str], date: Optional[str], url: Optional[str]):
    """Push MSG to every client connected with TOKEN."""
    _run(_push_impl(token, msg, pusher, type_, level, date, url))


async def _push_impl(token: str, msg: str, pusher: Optional[str], type_: Optional[str],
                     level: Optional[str], date: Optional[str], url: Optional[str]):
    form = {"msg": msg}
    for key, value in (("pusher", pusher), ("type", type_), ("level", level), ("date", date)):
        if value is not None:
            form[key] = value

    async with _client(url) as c:
        try:
            r = await c.post("/push", params={"token": token}, data=form)
        except httpx.HTTPError as e:
            _fail(f"could not reach {_server_url(url)}: {e}")

    if r.status_code == 404:
        _fail(f"no client has connected with token {token!r}")
    if r.status_code == 400:
        _fail(r.json().get("detail", "bad request"))
    if r.status_code != 200:
        _fail(f"server returned {r.status_code}")

    result = r.json()
    click.secho(
        f"Pushed to {result['token']} ({result['subscribers']} subscriber(s))",
        fg="green",
    )


# ---------------------------------------------------------------------------
# pushall listen
# ---------------------------------------------------------------------------


class ConnectRejected(Exception):
    """The relay refused the WebSocket upgrade with an HTTP status."""

    def __init__(self, status_code: int):
        super().__init__(f"server refused connection ({status_code})")
        self.status_code = status_code


def _ws_url(url: Optional[str], token: str) -> str:
    base = _server_url(url)
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/ws?{urlencode({'token': token})}"


@asynccontextmanager
async def _ws_connect(url: Optional[str], token: str):
    """Open /ws for `token`; yields an async iterator of str/bytes frames."""
    from websockets.asyncio.client import connect
    from websockets.exceptions import InvalidStatus

    try:
        async with connect(_ws_url(url, token)) as ws:
            yield ws
    except InvalidStatus as e:
        raise ConnectRejected(e.response.status_code) from e


def format_notification(payload: dict) -> str:
    """One line per push: `[level] pusher type @date: msg`."""
    parts = [payload[key] for key in ("pusher", "type") if payload.get(key)]
    if payload.get("date"):
        parts.append(f"@{payload['date']}")
    title = " ".join(parts) or "Notification"
    return f"[{payload.get('level') or 'info'}] {title}: {payload.get('msg', '')}"


@main.command()
@click.argument("token")
@click.option("--count", "-n", type=click.IntRange(min=1),
              help="Exit after this many notifications")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON payloads")
@click.option("--url", help=f"Server URL (default: PUSHALL_URL or {DEFAULT_URL})")
def listen(token: str, count: Optional[int], as_json: bool, url: Optional[str]):
    """Print notifications pushed to TOKEN until the server closes."""
    _run(_listen_impl(token, count, as_json, url))


async def _listen_impl(token: str, count: Optional[int], as_json: bool,
                       url: Optional[str]):
    from websockets.exceptions import ConnectionClosedError

    received = 0
    try:
        async with _ws_connect(url, token) as frames:
            async for frame in frames:
                # Heartbeats are empty binary frames
                if not isinstance(frame, str):
                    continue
                if frame == CONNECTED_FRAME:
                    click.secho(f"Listening on {token}", fg="green", err=True)
                    continue

                try:
                    payload = json.loads(frame)
                except json.JSONDecodeError:
                    click.echo(frame)
                else:
                    if as_json or not isinstance(payload, dict):
                        click.echo(frame)
                    else:
                        click.echo(format_notification(payload))

                received += 1
                if count is not None and received >= count:
                    return
    except ConnectRejected as e:
        if e.status_code == 400:
            _fail("token is required")
        _fail(str(e))
    except ConnectionClosedError as e:
        _fail(f"connection lost: {e}")
    except OSError as e:
        _fail(f"could not reach {_server_url(url)}: {e}")

    click.secho("Disconnected", fg="yellow", err=True)


# ---------------------------------------------------------------------------
# pushall status
# ---------------------------------------------------------------------------


@main.command()
@click.option("--url", help=f"Server URL (default: PUSHALL_URL or {DEFAULT_URL})")
def status(url: Optional[str]):
    """Show server version and registry size."""
    _run(_status_impl(url))


async def _status_impl(url: Optional[str]):
    async with _client(url) as c:
        try:
            r = await c.get("/health")
            r.raise_for_status()
        except httpx.HTTPError as e:
            _fail(f"health check failed: {e}")
    data = r.json()
    click.secho(f"pushall {data['version']}: {data['status']}", bold=True)
    click.echo(f"  channels:    {data['channels']}")
    click.echo(f"  subscribers: {data['subscribers']}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
