"""Event, metadata and subscriber models for the event bus."""

import copy
import inspect
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Protocol, Union, runtime_checkable

from order_events.events.errors import EventValidationError
from order_events.events.types import EventPriority

__all__ = [
    "DEFAULT_SOURCE",
    "DEFAULT_VERSION",
    "Event",
    "EventMetadata",
    "Handler",
    "HandlerLike",
    "SubscribeOptions",
    "Subscriber",
    "build_metadata",
    "invoke_handler",
    "new_event",
]

DEFAULT_SOURCE = "microservice"
DEFAULT_VERSION = "1.0.0"

_KNOWN_KEYS = ("source", "version", "correlation_id", "causation_id", "user_id", "priority")

# camelCase spellings arrive from HTTP headers and JSON bodies
_ALIASES = {
    "correlationId": "correlation_id",
    "causationId": "causation_id",
    "userId": "user_id",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_priority(value: Any) -> EventPriority:
    if isinstance(value, EventPriority):
        return value
    try:
        if isinstance(value, str) and not value.isdigit():
            return EventPriority[value.upper()]
        return EventPriority(int(value))
    except (KeyError, TypeError, ValueError) as e:
        raise EventValidationError(f"Invalid event priority: {value!r}") from e


@dataclass(frozen=True)
class EventMetadata:
    """Envelope attached to every event. `extra` keeps caller keys the bus does not know."""

    timestamp: datetime
    source: str = DEFAULT_SOURCE
    version: str = DEFAULT_VERSION
    correlation_id: str | None = None
    causation_id: str | None = None
    user_id: str | None = None
    priority: EventPriority = EventPriority.NORMAL
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = copy.deepcopy(self.extra)
        result.update(
            {
                "timestamp": self.timestamp.isoformat(),
                "source": self.source,
                "version": self.version,
                "correlation_id": self.correlation_id,
                "causation_id": self.causation_id,
                "user_id": self.user_id,
                "priority": int(self.priority),
            }
        )
        return result

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "EventMetadata":
        known = {k: raw.get(k) for k in _KNOWN_KEYS if raw.get(k) is not None}
        if "priority" in known:
            known["priority"] = _coerce_priority(known["priority"])
        extra = {k: v for k, v in raw.items() if k not in _KNOWN_KEYS and k != "timestamp"}
        ts = raw.get("timestamp")
        timestamp = datetime.fromisoformat(ts) if isinstance(ts, str) else (ts or _utcnow())
        return cls(timestamp=timestamp, extra=extra, **known)


def build_metadata(
    partial: Union[Mapping[str, Any], EventMetadata, None] = None, **overrides: Any
) -> EventMetadata:
    """Build a full metadata envelope from caller-supplied keys.

    timestamp is always set to now; source and version get defaults; unknown
    keys are kept in `extra` rather than dropped.
    """
    if isinstance(partial, EventMetadata):
        partial = partial.to_dict()
    overrides = {k: v for k, v in overrides.items() if v is not None}
    merged: dict[str, Any] = {}
    for key, value in {**dict(partial or {}), **overrides}.items():
        merged[_ALIASES.get(key, key)] = value
    merged.pop("timestamp", None)

    known: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in merged.items():
        if key in _KNOWN_KEYS:
            if value is not None:
                known[key] = value
        else:
            extra[key] = value
    if "priority" in known:
        known["priority"] = _coerce_priority(known["priority"])
    return EventMetadata(timestamp=_utcnow(), extra=extra, **known)


@dataclass(frozen=True)
class Event:
    """Immutable record of a domain occurrence."""

    id: str
    type: str
    data: dict[str, Any]
    metadata: EventMetadata
    processed: bool = False

    @property
    def correlation_id(self) -> str:
        return self.metadata.correlation_id or self.id

    @property
    def causation_id(self) -> str | None:
        return self.metadata.causation_id

    @property
    def created_at(self) -> float:
        return self.metadata.timestamp.timestamp()

    def detached(self) -> "Event":
        """Copy whose payload and extra metadata share nothing with this event."""
        return replace(
            self,
            data=copy.deepcopy(self.data),
            metadata=replace(self.metadata, extra=copy.deepcopy(self.metadata.extra)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": copy.deepcopy(self.data),
            "metadata": self.metadata.to_dict(),
            "processed": self.processed,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Event":
        return cls(
            id=raw["id"],
            type=raw["type"],
            data=copy.deepcopy(dict(raw.get("data") or {})),
            metadata=EventMetadata.from_dict(raw.get("metadata") or {}),
            processed=bool(raw.get("processed", False)),
        )


def new_event(
    event_type: str,
    data: Mapping[str, Any],
    metadata: Union[Mapping[str, Any], EventMetadata, None] = None,
) -> Event:
    """Create an event with a fresh id. A root event is its own correlation root."""
    event_id = str(uuid.uuid4())
    meta = build_metadata(metadata)
    if meta.correlation_id is None:
        meta = replace(meta, correlation_id=event_id)
    return Event(id=event_id, type=event_type, data=copy.deepcopy(dict(data)), metadata=meta)


@runtime_checkable
class Handler(Protocol):
    """Capability interface for subscribers: one handle(event) operation."""

    def handle(self, event: Event) -> Awaitable[None] | None: ...


HandlerLike = Union[Handler, Callable[[Event], Any]]


async def invoke_handler(handler: HandlerLike, event: Event) -> None:
    """Call a Handler object or a plain sync/async callable with the event.

    Each invocation receives its own copy, so a handler that mutates the payload
    cannot affect other subscribers, later retry attempts or the publisher.
    """
    target = handler if callable(handler) else handler.handle
    result = target(event.detached())
    if inspect.isawaitable(result):
        await result


@dataclass(frozen=True)
class SubscribeOptions:
    """retry: schedule background attempts on failure.
    max_retries: total attempts including the first dispatch.
    retry_delay: seconds between attempts."""

    retry: bool = False
    max_retries: int = 3
    retry_delay: float = 1.0

    @classmethod
    def coerce(
        cls,
        options: Union["SubscribeOptions", Mapping[str, Any], None],
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> "SubscribeOptions":
        if isinstance(options, SubscribeOptions):
            return options
        raw = dict(options or {})
        return cls(
            retry=bool(raw.get("retry", False)),
            max_retries=int(raw.get("max_retries", raw.get("maxRetries", max_retries))),
            retry_delay=float(raw.get("retry_delay", raw.get("retryDelay", retry_delay))),
        )


@dataclass
class Subscriber:
    """A registered interest in one event type (or "*" for all types)."""

    id: str
    event_type: str
    handler: HandlerLike
    options: SubscribeOptions
    is_active: bool = True
    created_at: float = field(default_factory=time.time)
