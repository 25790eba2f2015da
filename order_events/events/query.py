"""Query, replay and admin operations over the event log for HTTP-facing controllers."""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from order_events.events.bus import EventBus
from order_events.events.errors import EventNotFoundError, EventValidationError
from order_events.events.models import Event, build_metadata
from order_events.events.types import is_valid_type, validate_data

logger = logging.getLogger(__name__)

REPLAY_SOURCE = "replay"
API_SOURCE = "api"


class Pagination(BaseModel):
    page: int
    limit: int
    has_more: bool


class EventPage(BaseModel):
    """One page of events, most recent first."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    events: list[Event] = Field(default_factory=list)
    pagination: Pagination
    event_type: str | None = None

    @property
    def results(self) -> int:
        return len(self.events)


class ReplayResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    original_event: Event
    replayed_event: Event


def page_window(page: int, limit: int) -> tuple[int, int, int]:
    """Clamp page/limit to >= 1 and return (page, limit, offset)."""
    page = max(int(page or 1), 1)
    limit = max(int(limit or 1), 1)
    return page, limit, (page - 1) * limit


def _check_type(event_type: str) -> None:
    if not is_valid_type(event_type):
        raise EventValidationError(f"Invalid event type: {event_type}")


class EventQueryService:
    """Pull-based access to the event log plus publish/replay for admin tooling."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    @property
    def _store(self):
        return self._bus.store

    async def _page(self, event_type: str | None, page: int, limit: int) -> EventPage:
        page, limit, offset = page_window(page, limit)
        events = await self._store.get_events(event_type, limit, offset)
        return EventPage(
            events=events,
            pagination=Pagination(page=page, limit=limit, has_more=len(events) == limit),
            event_type=event_type,
        )

    async def get_events(self, page: int = 1, limit: int = 10) -> EventPage:
        return await self._page(None, page, limit)

    async def get_events_by_type(self, event_type: str, page: int = 1, limit: int = 10) -> EventPage:
        _check_type(event_type)
        return await self._page(event_type, page, limit)

    async def get_events_by_correlation_id(self, correlation_id: str) -> list[Event]:
        if not correlation_id:
            raise EventValidationError("Correlation ID is required")
        return await self._store.get_events_by_correlation_id(correlation_id)

    async def get_events_by_date_range(
        self,
        start: datetime | str | None,
        end: datetime | str | None,
        event_type: str | None = None,
    ) -> list[Event]:
        if not start or not end:
            raise EventValidationError("Start date and end date are required")
        if event_type:
            _check_type(event_type)
        start_dt = _parse_date(start, "start")
        end_dt = _parse_date(end, "end")
        if _aware(start_dt) > _aware(end_dt):
            raise EventValidationError("Start date must not be after end date")
        return await self._store.get_events_by_date_range(start_dt, end_dt, event_type)

    async def get_event(self, event_id: str) -> Event:
        event = await self._store.get_event(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    async def get_event_stats(self) -> dict[str, Any]:
        return await self._store.get_event_stats()

    def get_subscribers(self) -> list[dict[str, Any]]:
        return self._bus.get_subscribers()

    async def get_event_system_health(self) -> dict[str, Any]:
        return await self._bus.health_check()

    async def get_unprocessed_events(self, limit: int = 100) -> list[Event]:
        return await self._store.get_unprocessed_events(max(int(limit), 1))

    async def mark_event_as_processed(self, event_id: str, marked_by: str | None = None) -> None:
        if not await self._store.mark_event_as_processed(event_id):
            raise EventNotFoundError(event_id)
        logger.info("Event marked as processed: %s (by %s)", event_id, marked_by or "admin")

    async def record_processing_error(self, event_id: str, error: str, retry_count: int = 1) -> None:
        await self.get_event(event_id)
        await self._store.add_processing_error(event_id, error, retry_count)

    async def publish_event(
        self,
        event_type: str,
        data: Mapping[str, Any],
        metadata: Mapping[str, Any] | None = None,
        correlation_id: str | None = None,
        user_id: str | None = None,
    ) -> Event:
        """Validate type and payload, then publish with source="api"."""
        if not event_type or data is None:
            raise EventValidationError("Event type and data are required")
        _check_type(event_type)
        result = validate_data(event_type, dict(data))
        if not result.valid:
            raise EventValidationError(
                f"Invalid event data: {', '.join(result.errors)}", result.errors
            )
        meta = build_metadata(
            metadata, source=API_SOURCE, correlation_id=correlation_id, user_id=user_id
        )
        event = await self._bus.publish(event_type, data, meta)
        logger.info(
            "Event published via API: %s (%s) by %s", event_type, event.id, user_id or "anonymous"
        )
        return event

    async def replay_event(self, event_id: str, replayed_by: str | None = None) -> ReplayResult:
        """Re-publish an event's type/data as a new event caused by the original."""
        original = await self.get_event(event_id)
        replayed_by = replayed_by or "admin"
        meta = build_metadata(
            original.metadata.extra,
            source=REPLAY_SOURCE,
            version=original.metadata.version,
            priority=original.metadata.priority,
            correlation_id=original.correlation_id,
            causation_id=original.id,
            user_id=replayed_by,
            original_event_id=original.id,
            replayed_at=datetime.now(timezone.utc).isoformat(),
            replayed_by=replayed_by,
        )
        replayed = await self._bus.publish(original.type, original.data, meta)
        logger.info(
            "Event replayed: %s (%s -> %s) by %s",
            original.type,
            original.id,
            replayed.id,
            replayed_by,
        )
        return ReplayResult(original_event=original, replayed_event=replayed)


def _parse_date(value: datetime | str, name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise EventValidationError(f"Invalid {name} date: {value!r}") from e


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
