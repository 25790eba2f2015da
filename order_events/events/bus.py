"""Publish/subscribe dispatcher: persist → deliver to local subscribers → broadcast.

Local dispatch is direct and immediate. Failed deliveries for subscribers
registered with retry=True continue in background retry loops; publish never
waits for them.
"""

import logging
import uuid
from collections import defaultdict
from enum import Enum
from typing import Any, Mapping

from order_events.events.channel import DistributionChannel, Envelope, InMemoryChannel
from order_events.events.errors import (
    EventBusNotInitializedError,
    EventPersistenceError,
    EventValidationError,
)
from order_events.events.models import (
    Event,
    EventMetadata,
    HandlerLike,
    SubscribeOptions,
    Subscriber,
    invoke_handler,
    new_event,
)
from order_events.events.retry import RetryScheduler
from order_events.events.store import EventStore
from order_events.events.types import is_valid_type

logger = logging.getLogger(__name__)

WILDCARD = "*"


class BusState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    STOPPED = "stopped"


class EventBus:
    """Event bus over an EventStore and a DistributionChannel. Each instance owns its registry."""

    def __init__(
        self,
        store: EventStore,
        channel: DistributionChannel | None = None,
        default_max_retries: int = 3,
        default_retry_delay: float = 1.0,
        instance_id: str | None = None,
    ) -> None:
        self._store = store
        self._channel: DistributionChannel = channel or InMemoryChannel()
        self._default_max_retries = default_max_retries
        self._default_retry_delay = default_retry_delay
        self.instance_id = instance_id or uuid.uuid4().hex
        self._state = BusState.UNINITIALIZED
        self._subscribers: dict[str, Subscriber] = {}
        self._by_type: dict[str, list[Subscriber]] = defaultdict(list)
        self._retries = RetryScheduler()
        self._handler_failures = 0

    @property
    def state(self) -> BusState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state == BusState.READY

    @property
    def store(self) -> EventStore:
        return self._store

    @property
    def retries(self) -> RetryScheduler:
        return self._retries

    async def initialize(self) -> None:
        """Initialize the store and the distribution channel. READY only if both succeed."""
        if self._state == BusState.READY:
            return
        self._state = BusState.INITIALIZING
        try:
            await self._store.initialize()
            self._channel.set_listener(self._on_envelope)
            await self._channel.connect()
        except Exception:
            self._state = BusState.UNINITIALIZED
            logger.exception("Failed to initialize EventBus")
            await self._store.close()
            raise
        self._state = BusState.READY
        logger.info("EventBus initialized (instance %s)", self.instance_id)

    async def stop(self, drain: bool = False, timeout: float | None = None) -> None:
        """Shut down: optionally wait for pending retries, cancel the rest, close transports."""
        if drain:
            await self._retries.drain(timeout)
        await self._retries.cancel_all()
        if self._state == BusState.READY:
            await self._channel.close()
        await self._store.close()
        self._state = BusState.STOPPED
        logger.info("EventBus stopped")

    def _require_ready(self) -> None:
        if self._state != BusState.READY:
            raise EventBusNotInitializedError()

    async def publish(
        self,
        event_type: str,
        data: Mapping[str, Any],
        metadata: Mapping[str, Any] | EventMetadata | None = None,
    ) -> Event:
        """Persist the event, deliver it to local subscribers, broadcast it. Returns the event.

        Raises EventBusNotInitializedError before initialize() and
        EventPersistenceError when the store rejects the write; in both cases
        nothing is dispatched.
        """
        self._require_ready()
        event = new_event(event_type, data, metadata)
        try:
            await self._store.save_event(event)
        except EventPersistenceError:
            logger.error("Failed to publish event %s: not persisted", event_type)
            raise
        await self._dispatch(event)
        await self._broadcast(event)
        logger.info("Event published: %s (%s)", event_type, event.id)
        return event

    async def _dispatch(self, event: Event) -> None:
        """Invoke each matching subscriber in registration order, isolating failures."""
        targets = list(self._by_type.get(event.type, ())) + list(
            self._by_type.get(WILDCARD, ())
        )
        for subscriber in targets:
            if not subscriber.is_active:
                continue
            try:
                await invoke_handler(subscriber.handler, event)
            except Exception as e:
                self._handler_failures += 1
                logger.exception(
                    "Event handler %s failed for event %s/%s: %s",
                    subscriber.id,
                    event.type,
                    event.id,
                    e,
                )
                if subscriber.options.retry:
                    self._retries.schedule(event, subscriber, self._is_subscribed)

    async def _broadcast(self, event: Event) -> None:
        envelope: Envelope = {"origin": self.instance_id, "event": event.to_dict()}
        try:
            await self._channel.publish(envelope)
        except Exception as e:
            logger.warning("Failed to broadcast event %s (%s): %s", event.id, event.type, e)

    async def _on_envelope(self, envelope: Envelope) -> None:
        """Deliver an event published by another instance. Already persisted there."""
        if envelope.get("origin") == self.instance_id or self._state != BusState.READY:
            return
        try:
            event = Event.from_dict(envelope["event"])
        except (KeyError, TypeError, ValueError, EventValidationError) as e:
            logger.error("Dropping malformed event envelope: %s", e)
            return
        logger.debug("Received remote event %s (%s)", event.type, event.id)
        await self._dispatch(event)

    def _is_subscribed(self, subscriber: Subscriber) -> bool:
        return subscriber.is_active and self._subscribers.get(subscriber.id) is subscriber

    def subscribe(
        self,
        event_type: str,
        handler: HandlerLike,
        options: SubscribeOptions | Mapping[str, Any] | None = None,
    ) -> str:
        """Register handler for event_type ("*" = all types). Returns the subscriber id."""
        self._require_ready()
        if event_type != WILDCARD and not is_valid_type(event_type):
            raise EventValidationError(f"Invalid event type: {event_type}")
        subscriber = Subscriber(
            id=str(uuid.uuid4()),
            event_type=event_type,
            handler=handler,
            options=SubscribeOptions.coerce(
                options, self._default_max_retries, self._default_retry_delay
            ),
        )
        self._subscribers[subscriber.id] = subscriber
        self._by_type[event_type].append(subscriber)
        logger.info("Subscribed to event: %s (%s)", event_type, subscriber.id)
        return subscriber.id

    def unsubscribe(self, subscriber_id: str) -> bool:
        """Remove a subscriber. Its pending retries abort before their next attempt."""
        subscriber = self._subscribers.pop(subscriber_id, None)
        if subscriber is None:
            return False
        subscriber.is_active = False
        self._by_type[subscriber.event_type].remove(subscriber)
        logger.info("Unsubscribed from event: %s (%s)", subscriber.event_type, subscriber_id)
        return True

    def get_subscribers(self) -> list[dict[str, Any]]:
        return [
            {
                "id": s.id,
                "event_type": s.event_type,
                "is_active": s.is_active,
                "created_at": s.created_at,
            }
            for s in self._subscribers.values()
        ]

    async def get_event_history(self, event_type: str | None, limit: int = 100) -> list[Event]:
        return await self._store.get_events(event_type, limit)

    async def health_check(self) -> dict[str, Any]:
        """Aggregate bus state, channel liveness and store health. Never raises."""
        initialized = self._state == BusState.READY
        channel_ok = store_ok = False
        error: str | None = None
        try:
            channel_ok = bool(await self._channel.is_healthy())
            store_ok = bool(await self._store.health_check())
        except Exception as e:
            logger.exception("EventBus health check failed: %s", e)
            error = str(e)
        healthy = initialized and channel_ok and store_ok and error is None
        result: dict[str, Any] = {
            "status": "healthy" if healthy else "unhealthy",
            "initialized": initialized,
            "channel": channel_ok,
            "event_store": store_ok,
            "subscribers": len(self._subscribers),
            "handler_failures": self._handler_failures,
            "pending_retries": self._retries.pending,
            "exhausted_retries": self._retries.exhausted,
        }
        if error is not None:
            result["error"] = error
        return result
