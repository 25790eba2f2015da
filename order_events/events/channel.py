"""Cross-process distribution channels.

The bus broadcasts every locally published event on a channel so that
subscribers on other instances receive it. Envelopes carry the publishing
bus's instance id (`origin`) so a bus can skip its own broadcasts.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

Envelope = dict[str, Any]
EnvelopeListener = Callable[[Envelope], Awaitable[None]]


@runtime_checkable
class DistributionChannel(Protocol):
    """Injectable publish/subscribe transport between bus instances."""

    async def connect(self) -> None:
        """Open the transport and start receiving."""

    async def close(self) -> None:
        """Stop receiving and release connections."""

    async def publish(self, envelope: Envelope) -> None:
        """Broadcast one envelope to every connected instance."""

    def set_listener(self, listener: EnvelopeListener) -> None:
        """Callback invoked for each received envelope."""

    async def is_healthy(self) -> bool:
        """True = transport is connected and receiving."""


class InMemoryHub:
    """Shared in-process broker. Channels attached to one hub see each other's broadcasts."""

    def __init__(self) -> None:
        self._channels: list["InMemoryChannel"] = []

    def attach(self, channel: "InMemoryChannel") -> None:
        if channel not in self._channels:
            self._channels.append(channel)

    def detach(self, channel: "InMemoryChannel") -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    def broadcast(self, raw: str) -> None:
        """Enqueue raw on every attached channel. Delivery happens in each channel's listener task."""
        for channel in list(self._channels):
            channel._enqueue(raw)


class InMemoryChannel:
    """Channel backed by an InMemoryHub. Default for single-process deployments and tests.

    Each connected channel drains its own queue in a listener task, so a
    publisher never waits on another instance's handlers.
    """

    def __init__(self, hub: InMemoryHub | None = None) -> None:
        self._hub = hub or InMemoryHub()
        self._listener: EnvelopeListener | None = None
        self._queue: asyncio.Queue[str] | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._connected = False

    async def connect(self) -> None:
        self._queue = asyncio.Queue()
        self._listener_task = asyncio.create_task(self._listen())
        self._hub.attach(self)
        self._connected = True

    async def close(self) -> None:
        self._hub.detach(self)
        self._connected = False
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        self._queue = None

    async def publish(self, envelope: Envelope) -> None:
        if not self._connected:
            raise RuntimeError("Channel not connected")
        self._hub.broadcast(json.dumps(envelope, default=str))

    def set_listener(self, listener: EnvelopeListener) -> None:
        self._listener = listener

    async def is_healthy(self) -> bool:
        if not self._connected or self._listener_task is None:
            return False
        return not self._listener_task.done()

    async def flush(self) -> None:
        """Wait until every envelope queued so far has been handed to the listener."""
        if self._queue is not None:
            await self._queue.join()

    def _enqueue(self, raw: str) -> None:
        if self._queue is not None:
            self._queue.put_nowait(raw)

    async def _listen(self) -> None:
        queue = self._queue
        while True:
            raw = await queue.get()
            try:
                if self._listener is not None:
                    await self._listener(json.loads(raw))
            except Exception as e:
                logger.exception("In-memory channel listener failed: %s", e)
            finally:
                queue.task_done()


class RedisChannel:
    """Redis pub/sub channel: publishes to `<prefix>:<type>`, pattern-subscribes `<prefix>:*`."""

    def __init__(self, url: str = "redis://localhost:6379/0", prefix: str = "events") -> None:
        self._url = url
        self._prefix = prefix
        self._redis: aioredis.Redis | None = None
        self._pubsub: Any = None
        self._listener: EnvelopeListener | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._connected = False

    async def connect(self) -> None:
        self._redis = aioredis.from_url(self._url, decode_responses=True)
        try:
            await self._redis.ping()
            self._pubsub = self._redis.pubsub()
            await self._pubsub.psubscribe(f"{self._prefix}:*")
        except Exception:
            await self._redis.aclose()
            self._redis = None
            raise
        self._connected = True
        self._listener_task = asyncio.create_task(self._listen())
        logger.info("Redis channel connected: %s (prefix %s)", self._url, self._prefix)

    async def close(self) -> None:
        self._connected = False
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        logger.info("Redis channel closed")

    async def publish(self, envelope: Envelope) -> None:
        if not self._connected or self._redis is None:
            raise RuntimeError("Channel not connected")
        event_type = envelope.get("event", {}).get("type", "unknown")
        await self._redis.publish(f"{self._prefix}:{event_type}", json.dumps(envelope, default=str))

    def set_listener(self, listener: EnvelopeListener) -> None:
        self._listener = listener

    async def is_healthy(self) -> bool:
        if not self._connected or self._redis is None:
            return False
        if self._listener_task is None or self._listener_task.done():
            return False
        try:
            return bool(await self._redis.ping())
        except aioredis.RedisError as e:
            logger.warning("Redis channel ping failed: %s", e)
            return False

    async def _listen(self) -> None:
        while self._connected:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
            except aioredis.RedisError as e:
                logger.error("Redis channel receive failed: %s", e)
                await asyncio.sleep(1.0)
                continue
            if not message or message.get("type") != "pmessage":
                continue
            try:
                envelope = json.loads(message["data"])
            except (TypeError, ValueError) as e:
                logger.error("Error parsing event from %s: %s", message.get("channel"), e)
                continue
            if self._listener is None:
                continue
            try:
                await self._listener(envelope)
            except Exception as e:
                logger.exception("Redis channel listener failed: %s", e)
