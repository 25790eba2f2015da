"""Tests for EventQueryService: pagination, validation, replay, admin operations."""

from datetime import datetime, timedelta, timezone

import pytest

from order_events.events import (
    EventBus,
    EventNotFoundError,
    EventQueryService,
    EventValidationError,
)
from order_events.events.query import page_window


@pytest.fixture
def service(event_bus: EventBus) -> EventQueryService:
    return EventQueryService(event_bus)


def test_page_window() -> None:
    assert page_window(1, 10) == (1, 10, 0)
    assert page_window(3, 10) == (3, 10, 20)
    assert page_window(0, 0) == (1, 1, 0)


class TestEventQueryPagination:
    @pytest.mark.asyncio
    async def test_has_more_when_page_is_full(
        self, event_bus: EventBus, service: EventQueryService
    ) -> None:
        for i in range(3):
            await event_bus.publish("order.created", {"n": i})

        first = await service.get_events(page=1, limit=2)
        second = await service.get_events(page=2, limit=2)
        assert first.pagination.has_more is True
        assert [e.data["n"] for e in first.events] == [2, 1]
        assert second.pagination.has_more is False
        assert second.results == 1

    @pytest.mark.asyncio
    async def test_by_type_rejects_unknown_type(self, service: EventQueryService) -> None:
        with pytest.raises(EventValidationError):
            await service.get_events_by_type("order.teleported")

    @pytest.mark.asyncio
    async def test_by_type_filters(self, event_bus: EventBus, service: EventQueryService) -> None:
        await event_bus.publish("order.created", {})
        await event_bus.publish("user.created", {})
        page = await service.get_events_by_type("user.created")
        assert page.event_type == "user.created"
        assert [e.type for e in page.events] == ["user.created"]


class TestEventQueryLookups:
    @pytest.mark.asyncio
    async def test_get_event_not_found(self, service: EventQueryService) -> None:
        with pytest.raises(EventNotFoundError):
            await service.get_event("missing")

    @pytest.mark.asyncio
    async def test_correlation_id_required(self, service: EventQueryService) -> None:
        with pytest.raises(EventValidationError):
            await service.get_events_by_correlation_id("")

    @pytest.mark.asyncio
    async def test_date_range_validation(
        self, event_bus: EventBus, service: EventQueryService
    ) -> None:
        now = datetime.now(timezone.utc)
        with pytest.raises(EventValidationError):
            await service.get_events_by_date_range(None, now)
        with pytest.raises(EventValidationError):
            await service.get_events_by_date_range(now, now - timedelta(hours=1))

        await event_bus.publish("order.created", {})
        events = await service.get_events_by_date_range(
            (now - timedelta(minutes=1)).isoformat(), (now + timedelta(minutes=1)).isoformat()
        )
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_unparseable_dates_rejected(self, service: EventQueryService) -> None:
        with pytest.raises(EventValidationError, match="start"):
            await service.get_events_by_date_range("yesterday", "2024-01-01T00:00:00")
        with pytest.raises(EventValidationError, match="end"):
            await service.get_events_by_date_range("2024-01-01T00:00:00", "2024-13-45")

    @pytest.mark.asyncio
    async def test_mark_processed(self, event_bus: EventBus, service: EventQueryService) -> None:
        event = await event_bus.publish("order.created", {})
        assert [e.id for e in await service.get_unprocessed_events()] == [event.id]
        await service.mark_event_as_processed(event.id)
        assert await service.get_unprocessed_events() == []
        with pytest.raises(EventNotFoundError):
            await service.mark_event_as_processed("missing")

    @pytest.mark.asyncio
    async def test_record_processing_error(
        self, event_bus: EventBus, service: EventQueryService
    ) -> None:
        event = await event_bus.publish("order.created", {})
        await service.record_processing_error(event.id, "reconciler failed")
        errors = await event_bus.store.get_processing_errors(event.id)
        assert errors[0]["error"] == "reconciler failed"
        with pytest.raises(EventNotFoundError):
            await service.record_processing_error("missing", "x")

    @pytest.mark.asyncio
    async def test_health_and_subscribers(
        self, event_bus: EventBus, service: EventQueryService
    ) -> None:
        event_bus.subscribe("order.created", lambda event: None)
        assert len(service.get_subscribers()) == 1
        health = await service.get_event_system_health()
        assert health["status"] == "healthy"
        assert health["subscribers"] == 1


class TestEventQueryPublish:
    @pytest.mark.asyncio
    async def test_publish_event_validates_payload(self, service: EventQueryService) -> None:
        with pytest.raises(EventValidationError) as exc_info:
            await service.publish_event("order.created", {"orderId": "o1"})
        assert "Missing required field: userId" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_publish_event_rejects_unknown_priority(
        self, event_bus: EventBus, service: EventQueryService
    ) -> None:
        with pytest.raises(EventValidationError, match="priority"):
            await service.publish_event("system.error", {}, metadata={"priority": "urgent"})
        with pytest.raises(EventValidationError):
            await service.publish_event("system.error", {}, metadata={"priority": 99})
        assert (await event_bus.store.get_event_stats())["total_events"] == 0

    @pytest.mark.asyncio
    async def test_publish_event_unknown_type(self, service: EventQueryService) -> None:
        with pytest.raises(EventValidationError):
            await service.publish_event("order.lost", {})

    @pytest.mark.asyncio
    async def test_publish_event_sets_api_source(self, service: EventQueryService) -> None:
        event = await service.publish_event(
            "inventory.updated",
            {"productId": "p1", "quantity": 5, "operation": "restock"},
            correlation_id="req-1",
            user_id="u1",
        )
        assert event.metadata.source == "api"
        assert event.metadata.correlation_id == "req-1"
        assert event.metadata.user_id == "u1"


class TestEventQueryReplay:
    @pytest.mark.asyncio
    async def test_replay_creates_new_event_caused_by_original(
        self, event_bus: EventBus, service: EventQueryService
    ) -> None:
        original = await event_bus.publish(
            "order.created", {"orderId": "o1"}, {"correlation_id": "corr-9"}
        )
        received = []
        event_bus.subscribe("order.created", received.append)

        result = await service.replay_event(original.id, replayed_by="ops")
        replayed = result.replayed_event

        assert result.original_event.id == original.id
        assert replayed.id != original.id
        assert replayed.type == original.type
        assert replayed.data == original.data
        assert replayed.metadata.source == "replay"
        assert replayed.metadata.causation_id == original.id
        assert replayed.metadata.correlation_id == "corr-9"
        assert replayed.metadata.extra["original_event_id"] == original.id
        assert replayed.metadata.extra["replayed_by"] == "ops"
        assert [e.id for e in received] == [replayed.id]

        stored = await event_bus.store.get_event(replayed.id)
        assert stored.metadata.source == "replay"

    @pytest.mark.asyncio
    async def test_replay_missing_event(self, service: EventQueryService) -> None:
        with pytest.raises(EventNotFoundError):
            await service.replay_event("missing")
