"""Push service — validate a publish and fan it out.

Learn: The service is stateless apart from the registry it is handed.
It never creates channels: a token must have been connected to at least
once before it can be pushed to. Broadcasting is fire-and-forget, so a
push to a channel with no current subscribers still succeeds.

Route handlers translate the exceptions below into HTTP status codes.
"""

from typing import Optional

import structlog

from pushall.realtime.registry import ChannelRegistry
from pushall.schemas.push import PushPayload

logger = structlog.get_logger()


class EmptyMessageError(Exception):
    """Raised when msg is empty or whitespace-only."""


class MissingTokenError(Exception):
    """Raised when the routing key is missing or whitespace-only."""


class ChannelNotFoundError(Exception):
    """Raised when no client has ever connected with the token."""

    def __init__(self, token: str):
        super().__init__(f"No channel for token {token!r}")
        self.token = token


class PushService:
    """Turns a push request into a broadcast on the token's channel."""

    def __init__(self, registry: ChannelRegistry):
        self.registry = registry

    async def push(
        self,
        *,
        token: str,
        msg: str,
        pusher: Optional[str] = None,
        type: Optional[str] = None,
        level: Optional[str] = None,
        date: Optional[str] = None,
    ) -> int:
        """Broadcast a message; returns how many subscribers it was queued for.

        Learn: Validation happens before the registry is touched, so an
        empty message is a 400 whether or not the token exists.
        """
        if not msg or not msg.strip():
            raise EmptyMessageError("msg must not be empty")
        if not token or not token.strip():
            raise MissingTokenError("token must not be empty")

        channel = await self.registry.lookup(token)
        if channel is None:
            raise ChannelNotFoundError(token)

        payload = PushPayload(
            pusher=pusher, msg=msg, type=type, level=level, date=date
        ).to_frame()
        receivers = channel.send(payload)

        logger.info(
            "pushall.push",
            pushed_to=token,
            payload=payload,
            subscribers=receivers,
        )
        return receivers
