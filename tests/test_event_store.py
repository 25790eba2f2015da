"""Tests for EventStore: initialization, append-only writes, queries, stats, health."""

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from order_events.events import (
    EventPersistenceError,
    EventStore,
    EventStoreNotInitializedError,
)
from order_events.events.models import new_event


class TestEventStoreInitialize:
    @pytest.mark.asyncio
    async def test_operations_before_initialize_raise(self, db_path: Path) -> None:
        store = EventStore(db_path)
        with pytest.raises(EventStoreNotInitializedError):
            await store.save_event(new_event("order.created", {}))
        with pytest.raises(EventStoreNotInitializedError):
            await store.get_events()
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_initialize_creates_indexes_and_is_idempotent(self, db_path: Path) -> None:
        store = EventStore(db_path)
        await store.initialize()
        await store.initialize()
        await store.close()

        conn = sqlite3.connect(db_path)
        names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'")}
        conn.close()
        assert {
            "idx_events_type_created",
            "idx_events_correlation",
            "idx_events_created",
            "idx_events_processed",
        } <= names

    @pytest.mark.asyncio
    async def test_unreachable_path_raises_persistence_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        store = EventStore(blocker / "events.db")
        with pytest.raises(EventPersistenceError):
            await store.initialize()


class TestEventStoreWrites:
    @pytest.mark.asyncio
    async def test_save_and_get_round_trip(self, store: EventStore) -> None:
        event = new_event(
            "order.created",
            {"orderId": "o1", "items": [{"productId": "p1", "quantity": 2}]},
            {"source": "api", "user_id": "u1", "trace_span": "abc"},
        )
        await store.save_event(event)

        loaded = await store.get_event(event.id)
        assert loaded is not None
        assert loaded.data == event.data
        assert loaded.metadata.source == "api"
        assert loaded.metadata.correlation_id == event.id
        assert loaded.metadata.extra == {"trace_span": "abc"}
        assert loaded.metadata.timestamp == event.metadata.timestamp
        assert loaded.processed is False

    @pytest.mark.asyncio
    async def test_duplicate_id_is_rejected(self, store: EventStore) -> None:
        event = new_event("order.created", {"v": 1})
        await store.save_event(event)
        with pytest.raises(EventPersistenceError):
            await store.save_event(event)
        assert (await store.get_event_stats())["total_events"] == 1

    @pytest.mark.asyncio
    async def test_write_after_connection_closed_raises_persistence_error(
        self, store: EventStore
    ) -> None:
        await store._conn.close()
        with pytest.raises(EventPersistenceError):
            await store.save_event(new_event("order.created", {}))

    @pytest.mark.asyncio
    async def test_get_missing_event_returns_none(self, store: EventStore) -> None:
        assert await store.get_event("missing") is None

    @pytest.mark.asyncio
    async def test_concurrent_writes(self, store: EventStore) -> None:
        events = [new_event("user.login", {"n": i}) for i in range(50)]
        await asyncio.gather(*(store.save_event(e) for e in events))
        assert len(await store.get_events(limit=100)) == 50


class TestEventStoreQueries:
    @pytest.mark.asyncio
    async def test_get_events_most_recent_first_with_pagination(self, store: EventStore) -> None:
        for i in range(5):
            await store.save_event(new_event("order.created", {"n": i}))
        await store.save_event(new_event("user.created", {"n": 99}))

        page1 = await store.get_events("order.created", limit=2, offset=0)
        page2 = await store.get_events("order.created", limit=2, offset=2)
        assert [e.data["n"] for e in page1] == [4, 3]
        assert [e.data["n"] for e in page2] == [2, 1]
        assert len(await store.get_events()) == 6

    @pytest.mark.asyncio
    async def test_correlation_chain_oldest_first(self, store: EventStore) -> None:
        root = new_event("order.created", {"step": 0})
        await store.save_event(root)
        for step in (1, 2):
            await store.save_event(
                new_event(
                    "inventory.updated",
                    {"step": step},
                    {"correlation_id": root.id, "causation_id": root.id},
                )
            )
        await store.save_event(new_event("order.created", {"step": "other"}))

        chain = await store.get_events_by_correlation_id(root.id)
        assert [e.data["step"] for e in chain] == [0, 1, 2]
        assert all(e.correlation_id == root.id for e in chain)

    @pytest.mark.asyncio
    async def test_date_range(self, store: EventStore) -> None:
        before = datetime.now(timezone.utc) - timedelta(seconds=1)
        await store.save_event(new_event("order.created", {}))
        await store.save_event(new_event("user.created", {}))
        after = datetime.now(timezone.utc) + timedelta(seconds=1)

        assert len(await store.get_events_by_date_range(before, after)) == 2
        only_orders = await store.get_events_by_date_range(before, after, "order.created")
        assert [e.type for e in only_orders] == ["order.created"]
        past = before - timedelta(days=1)
        assert await store.get_events_by_date_range(past, before) == []
        assert len(await store.get_events_by_date_range(before.isoformat(), after.isoformat())) == 2


class TestEventStoreProcessing:
    @pytest.mark.asyncio
    async def test_unprocessed_and_mark_processed(self, store: EventStore) -> None:
        first = new_event("order.created", {"n": 1})
        second = new_event("order.created", {"n": 2})
        await store.save_event(first)
        await store.save_event(second)

        assert [e.id for e in await store.get_unprocessed_events()] == [first.id, second.id]
        assert await store.mark_event_as_processed(first.id) is True
        assert [e.id for e in await store.get_unprocessed_events()] == [second.id]

        loaded = await store.get_event(first.id)
        assert loaded.processed is True
        assert loaded.data == {"n": 1}

    @pytest.mark.asyncio
    async def test_mark_unknown_event_returns_false(self, store: EventStore) -> None:
        assert await store.mark_event_as_processed("missing") is False

    @pytest.mark.asyncio
    async def test_processing_errors_recorded_separately(self, store: EventStore) -> None:
        event = new_event("order.created", {})
        await store.save_event(event)
        await store.add_processing_error(event.id, "handler timed out", retry_count=2)

        errors = await store.get_processing_errors(event.id)
        assert len(errors) == 1
        assert errors[0]["error"] == "handler timed out"
        assert errors[0]["retry_count"] == 2


class TestEventStoreStats:
    @pytest.mark.asyncio
    async def test_stats(self, store: EventStore) -> None:
        events = [
            new_event("order.created", {}),
            new_event("order.created", {}),
            new_event("user.created", {}),
        ]
        for e in events:
            await store.save_event(e)
        await store.mark_event_as_processed(events[0].id)

        stats = await store.get_event_stats(recent_limit=2)
        assert stats["total_events"] == 3
        assert stats["events_by_status"] == {"processed": 1, "unprocessed": 2}
        orders = stats["events_by_type"]["order.created"]
        assert orders["count"] == 2
        assert orders["processed"] == 1
        assert orders["unprocessed"] == 1
        assert orders["last_event"] is not None
        assert [e.id for e in stats["recent_events"]] == [events[2].id, events[1].id]

    @pytest.mark.asyncio
    async def test_health_check(self, db_path: Path) -> None:
        store = EventStore(db_path)
        await store.initialize()
        assert await store.health_check() is True
        await store.close()
        assert await store.health_check() is False
