"""Channel registry — routing key → BroadcastChannel.

Learn: This is the rendezvous point between publishers and WebSocket
clients. A channel is created the first time a client connects with a
token; a publish only ever *looks up* a channel, so pushing to a token
nobody has connected with is a 404, not a silent no-op.

The mapping is the only state shared between concurrent requests. It is
guarded by one asyncio.Lock held just for the dict lookup/insert, never
across a WebSocket send or an HTTP response write.

Channels are kept for the process lifetime unless idle eviction is
enabled (PUSHALL_CHANNEL_IDLE_TTL_SECONDS), in which case ChannelSweeper
drops channels that have had no subscribers for that long.
"""

import asyncio
import time
from typing import Optional

import structlog

from pushall.realtime.broadcast import DEFAULT_CAPACITY, BroadcastChannel

logger = structlog.get_logger()


class ChannelRegistry:
    """Lock-guarded map of routing keys to broadcast channels."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity
        self._channels: dict[str, BroadcastChannel] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, key: str) -> BroadcastChannel:
        """Return the channel for `key`, creating it exactly once."""
        async with self._lock:
            channel = self._channels.get(key)
            if channel is None:
                channel = BroadcastChannel(key, capacity=self.capacity)
                self._channels[key] = channel
                created = True
            else:
                created = False
        if created:
            logger.info("pushall.channel_created", token=key)
        return channel

    async def lookup(self, key: str) -> Optional[BroadcastChannel]:
        """Return the channel for `key` without creating it."""
        async with self._lock:
            return self._channels.get(key)

    async def evict_idle(
        self, ttl_seconds: float, now: Optional[float] = None
    ) -> list[str]:
        """Drop channels with zero subscribers for at least `ttl_seconds`."""
        now = time.monotonic() if now is None else now
        async with self._lock:
            expired = [
                key
                for key, channel in self._channels.items()
                if channel.subscriber_count == 0
                and channel.idle_since is not None
                and now - channel.idle_since >= ttl_seconds
            ]
            evicted = [self._channels.pop(key) for key in expired]
        for channel in evicted:
            channel.close()
            logger.info("pushall.channel_evicted", token=channel.key)
        return expired

    async def stats(self) -> dict[str, int]:
        async with self._lock:
            channels = list(self._channels.values())
        return {
            "channels": len(channels),
            "subscribers": sum(c.subscriber_count for c in channels),
        }

    async def close(self) -> None:
        """Close every channel (wakes all sessions) and forget them."""
        async with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            channel.close()

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, key: str) -> bool:
        return key in self._channels


class ChannelSweeper:
    """Background loop that evicts idle channels.

    Runs as a task in the FastAPI lifespan, only when an idle TTL is set.
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        ttl_seconds: float,
        poll_interval: float = 60.0,
    ):
        self.registry = registry
        self.ttl_seconds = ttl_seconds
        self.poll_interval = poll_interval
        self._running = False

    async def run_loop(self) -> None:
        self._running = True
        logger.info(
            "pushall.sweeper_started",
            ttl_seconds=self.ttl_seconds,
            poll_interval=self.poll_interval,
        )
        while self._running:
            await asyncio.sleep(self.poll_interval)
            await self.registry.evict_idle(self.ttl_seconds)

    def stop(self) -> None:
        self._running = False


# Global registry (initialized in lifespan)
_registry: Optional[ChannelRegistry] = None


def init_registry(capacity: int = DEFAULT_CAPACITY) -> ChannelRegistry:
    """Create a fresh, empty registry and make it the global one."""
    global _registry
    _registry = ChannelRegistry(capacity=capacity)
    return _registry


async def close_registry() -> None:
    """Close all channels and drop the global registry."""
    global _registry
    if _registry is not None:
        await _registry.close()
        _registry = None


def get_registry() -> ChannelRegistry:
    """Get the channel registry (must be initialized first)."""
    if _registry is None:
        raise RuntimeError("Channel registry not initialized. Call init_registry() first.")
    return _registry
