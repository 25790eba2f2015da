"""Event system: schema, append-only store, publish/subscribe bus with retries."""

from order_events.events.bus import WILDCARD, BusState, EventBus
from order_events.events.channel import (
    DistributionChannel,
    InMemoryChannel,
    InMemoryHub,
    RedisChannel,
)
from order_events.events.errors import (
    EventBusNotInitializedError,
    EventNotFoundError,
    EventPersistenceError,
    EventStoreNotInitializedError,
    EventSystemError,
    EventValidationError,
    NotInitializedError,
)
from order_events.events.models import (
    Event,
    EventMetadata,
    Handler,
    SubscribeOptions,
    build_metadata,
)
from order_events.events.query import EventQueryService
from order_events.events.store import EventStore

__all__ = [
    "BusState",
    "DistributionChannel",
    "Event",
    "EventBus",
    "EventBusNotInitializedError",
    "EventMetadata",
    "EventNotFoundError",
    "EventPersistenceError",
    "EventQueryService",
    "EventStore",
    "EventStoreNotInitializedError",
    "EventSystemError",
    "EventValidationError",
    "Handler",
    "InMemoryChannel",
    "InMemoryHub",
    "NotInitializedError",
    "RedisChannel",
    "SubscribeOptions",
    "WILDCARD",
    "build_metadata",
]
