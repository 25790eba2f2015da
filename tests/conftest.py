"""Shared fixtures: per-test SQLite store and an initialized bus."""

from pathlib import Path

import pytest

from order_events.events import EventBus, EventStore


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "events.db"


@pytest.fixture
async def store(db_path: Path) -> EventStore:
    s = EventStore(db_path)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
async def event_bus(db_path: Path) -> EventBus:
    bus = EventBus(EventStore(db_path), default_retry_delay=0.01)
    await bus.initialize()
    yield bus
    await bus.stop()
