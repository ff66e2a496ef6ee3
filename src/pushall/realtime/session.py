"""Connection session — one WebSocket client bound to one token.

Learn: A session moves connecting → active → closed and never back.
While active it races three awaitables with asyncio.wait(FIRST_COMPLETED):

1. websocket.receive()     : inbound frame from the client
2. subscription.recv()     : next broadcast for this token
3. asyncio.sleep(interval) : heartbeat tick

Whichever finishes first is handled and re-armed; the other two keep
waiting. Any read/write failure or a client close ends the session.
There are no retries: a failed delivery is simply lost for this client.

The heartbeat is an empty binary frame. ASGI gives applications no way
to send a protocol-level ping (uvicorn sends those itself, see
`pushall serve`), and clients ignore non-text frames. The write
still fails on a dead connection. PUSHALL_HEARTBEAT_FRAMES=false drops
the tick and leaves liveness to the protocol pings alone.
"""

import asyncio
import enum
from contextlib import suppress
from typing import Optional

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from pushall.config import settings
from pushall.realtime.broadcast import Subscription, SubscriptionClosed
from pushall.realtime.registry import ChannelRegistry, get_registry

logger = structlog.get_logger()

CONNECTED_FRAME = "connected"
HEARTBEAT_FRAME = b""

# What a dead or closed socket raises from send()/receive()
TRANSPORT_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)


class SessionState(str, enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


class ConnectionSession:
    """State machine for a single accepted WebSocket connection."""

    def __init__(
        self,
        websocket: WebSocket,
        token: str,
        *,
        registry: Optional[ChannelRegistry] = None,
        heartbeat_interval: Optional[float] = None,
        heartbeat_frames: Optional[bool] = None,
    ):
        self.websocket = websocket
        self.token = token
        self.registry = registry if registry is not None else get_registry()
        self.heartbeat_interval = (
            heartbeat_interval
            if heartbeat_interval is not None
            else settings.heartbeat_interval_seconds
        )
        self.heartbeat_frames = (
            heartbeat_frames
            if heartbeat_frames is not None
            else settings.heartbeat_frames
        )
        self.state = SessionState.CONNECTING
        self.subscription: Optional[Subscription] = None

    async def run(self) -> None:
        """Serve the connection until it closes."""
        channel = await self.registry.get_or_create(self.token)
        cancelled = False
        try:
            with channel.subscribe() as subscription:
                self.subscription = subscription
                self.state = SessionState.ACTIVE
                await self._serve(subscription)
        except SubscriptionClosed:
            # Registry shut down between get_or_create and subscribe
            pass
        except asyncio.CancelledError:
            # Server shutdown: no further awaits, the caller is tearing down
            cancelled = True
            raise
        finally:
            self.state = SessionState.CLOSED
            self.subscription = None
            logger.info("pushall.client_disconnected", token=self.token)
            if not cancelled and self.websocket.client_state == WebSocketState.CONNECTED:
                with suppress(*TRANSPORT_ERRORS):
                    await self.websocket.close()

    async def _serve(self, subscription: Subscription) -> None:
        if not await self._send(text=CONNECTED_FRAME):
            return

        receive = asyncio.ensure_future(self.websocket.receive())
        deliver = asyncio.ensure_future(subscription.recv())
        tick = self._arm_heartbeat()
        try:
            while True:
                waiting = {receive, deliver}
                if tick is not None:
                    waiting.add(tick)
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                if receive in done:
                    if not self._on_inbound(receive):
                        return
                    receive = asyncio.ensure_future(self.websocket.receive())

                if deliver in done:
                    if not await self._on_delivery(deliver):
                        return
                    deliver = asyncio.ensure_future(subscription.recv())

                if tick in done:
                    if not await self._send(bytes_=HEARTBEAT_FRAME):
                        return
                    tick = self._arm_heartbeat()
        finally:
            for task in (receive, deliver, tick):
                if task is not None:
                    task.cancel()

    def _arm_heartbeat(self) -> Optional[asyncio.Future]:
        if not self.heartbeat_frames:
            return None
        return asyncio.ensure_future(asyncio.sleep(self.heartbeat_interval))

    def _on_inbound(self, task: asyncio.Future) -> bool:
        """Handle one inbound frame. Returns False when the session must close."""
        try:
            message = task.result()
        except TRANSPORT_ERRORS:
            return False

        if message["type"] == "websocket.disconnect":
            return False
        if message["type"] == "websocket.receive" and message.get("text") is not None:
            logger.info(
                "pushall.frame_received",
                token=self.token,
                text=message["text"],
            )
        # Binary frames are ignored
        return True

    async def _on_delivery(self, task: asyncio.Future) -> bool:
        try:
            message = task.result()
        except SubscriptionClosed:
            return False

        if not await self._send(text=message):
            return False
        logger.info("pushall.frame_sent", token=self.token, text=message)
        return True

    async def _send(
        self, *, text: Optional[str] = None, bytes_: Optional[bytes] = None
    ) -> bool:
        """Write one frame. Returns False if the transport is gone."""
        try:
            if text is not None:
                await self.websocket.send_text(text)
            else:
                await self.websocket.send_bytes(bytes_)
        except TRANSPORT_ERRORS:
            return False
        return True
