"""In-process broadcast channel — one sender, many subscribers.

Learn: Each subscriber gets its own bounded buffer (a deque with maxlen),
which acts as an independent read cursor over the channel's messages.
send() is synchronous and never blocks: when a slow subscriber's buffer
is full, its oldest unread message is dropped to make room. The
publisher never waits for consumers and memory never grows unbounded.

Everything here runs on the event loop thread, so the subscriber set
and the buffers need no lock.
"""

import asyncio
import time
from collections import deque
from typing import Optional

import structlog

logger = structlog.get_logger()

DEFAULT_CAPACITY = 100


class SubscriptionClosed(Exception):
    """Raised by Subscription.recv() once the subscription or channel is closed."""


class Subscription:
    """One subscriber's view of a BroadcastChannel.

    Use as a context manager so the subscription is always released:

        with channel.subscribe() as sub:
            message = await sub.recv()
    """

    def __init__(self, channel: "BroadcastChannel", capacity: int):
        self.channel = channel
        self._buffer: deque[str] = deque(maxlen=capacity)
        self._ready = asyncio.Event()
        self.closed = False
        self.missed = 0  # messages dropped because the buffer was full

    def _push(self, message: str) -> bool:
        """Append `message`; returns True if the oldest message was dropped."""
        dropped = len(self._buffer) == self._buffer.maxlen
        if dropped:
            self.missed += 1
        self._buffer.append(message)
        self._ready.set()
        return dropped

    @property
    def pending(self) -> int:
        return len(self._buffer)

    async def recv(self) -> str:
        """Wait for the next message, oldest first."""
        while not self._buffer:
            if self.closed:
                raise SubscriptionClosed(self.channel.key)
            self._ready.clear()
            await self._ready.wait()
        return self._buffer.popleft()

    def close(self) -> None:
        """Detach from the channel. Buffered messages are discarded."""
        if self.closed:
            return
        self.closed = True
        self._buffer.clear()
        self._ready.set()
        self.channel._release(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        try:
            return await self.recv()
        except SubscriptionClosed:
            raise StopAsyncIteration


class BroadcastChannel:
    """Fan-out channel for a single routing key."""

    def __init__(self, key: str, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.key = key
        self.capacity = capacity
        self.closed = False
        self._subscribers: set[Subscription] = set()
        # Monotonic time since the channel last had zero subscribers
        self.idle_since: Optional[float] = time.monotonic()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        if self.closed:
            raise SubscriptionClosed(self.key)
        sub = Subscription(self, self.capacity)
        self._subscribers.add(sub)
        self.idle_since = None
        return sub

    def _release(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)
        if not self._subscribers:
            self.idle_since = time.monotonic()

    def send(self, message: str) -> int:
        """Queue `message` for every current subscriber.

        Returns the number of subscribers it was queued for. Zero is not
        an error; there was simply nobody listening.
        """
        for sub in list(self._subscribers):
            if sub._push(message):
                logger.debug(
                    "pushall.subscriber_lagging",
                    token=self.key,
                    missed=sub.missed,
                )
        return len(self._subscribers)

    def close(self) -> None:
        """Close every subscription; waiting receivers get SubscriptionClosed."""
        self.closed = True
        for sub in list(self._subscribers):
            sub.close()
