"""SQLite event store: append-only, queryable log of every published event."""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from order_events.events.errors import (
    EventPersistenceError,
    EventStoreNotInitializedError,
)
from order_events.events.models import Event, EventMetadata

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    id              TEXT    NOT NULL UNIQUE,
    type            TEXT    NOT NULL,
    data            TEXT    NOT NULL,
    metadata        TEXT    NOT NULL,
    correlation_id  TEXT,
    causation_id    TEXT,
    source          TEXT    NOT NULL,
    created_at      REAL    NOT NULL,
    processed       INTEGER NOT NULL DEFAULT 0,
    processed_at    REAL
);

CREATE INDEX IF NOT EXISTS idx_events_type_created ON events(type, created_at);
CREATE INDEX IF NOT EXISTS idx_events_correlation ON events(correlation_id);
CREATE INDEX IF NOT EXISTS idx_events_created ON events(created_at);
CREATE INDEX IF NOT EXISTS idx_events_processed ON events(processed, created_at);

CREATE TABLE IF NOT EXISTS event_processing_errors (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id        TEXT    NOT NULL,
    error           TEXT    NOT NULL,
    retry_count     INTEGER NOT NULL DEFAULT 1,
    created_at      REAL    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_epe_event ON event_processing_errors(event_id);
"""

_COLUMNS = "id, type, data, metadata, processed"


def _row_to_event(row: tuple) -> Event:
    return Event(
        id=row[0],
        type=row[1],
        data=json.loads(row[2]),
        metadata=EventMetadata.from_dict(json.loads(row[3])),
        processed=bool(row[4]),
    )


def _to_epoch(value: datetime | str | float) -> float:
    """Accept datetime, ISO 8601 string or epoch seconds. Naive datetimes are UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return float(value)


def _iso(epoch: float | None) -> str | None:
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


class EventStore:
    """SQLite-backed event store. One connection per instance."""

    def __init__(self, db_path: Path | str, busy_timeout: int = 5000) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    async def initialize(self) -> None:
        """Open the database and ensure schema and indexes. Safe to call twice."""
        if self._conn is not None:
            return
        path = str(self._db_path)
        try:
            if path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            # autocommit: each statement is its own transaction, so concurrent
            # publishers never share an implicit one
            conn = await aiosqlite.connect(path, isolation_level=None)
            try:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
                await conn.execute(f"PRAGMA busy_timeout={self._busy_timeout}")
                await conn.executescript(_SCHEMA)
            except aiosqlite.Error:
                await conn.close()
                raise
        except (aiosqlite.Error, OSError) as e:
            logger.error("Failed to initialize EventStore at %s: %s", path, e)
            raise EventPersistenceError(f"Failed to initialize EventStore: {e}") from e
        self._conn = conn
        logger.info("EventStore initialized at %s", path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise EventStoreNotInitializedError()
        return self._conn

    async def save_event(self, event: Event) -> None:
        """Append the event. Never overwrites: a duplicate id is a persistence failure."""
        conn = self._require_conn()
        try:
            await conn.execute(
                """
                INSERT INTO events (id, type, data, metadata, correlation_id,
                    causation_id, source, created_at, processed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)
                """,
                (
                    event.id,
                    event.type,
                    json.dumps(event.data, ensure_ascii=False, default=str),
                    json.dumps(event.metadata.to_dict(), ensure_ascii=False, default=str),
                    event.correlation_id,
                    event.causation_id,
                    event.metadata.source,
                    event.created_at,
                ),
            )
        except (aiosqlite.Error, OSError, ValueError) as e:
            logger.error("Failed to save event %s (%s): %s", event.id, event.type, e)
            raise EventPersistenceError(f"Failed to save event {event.id}: {e}") from e
        logger.debug("Event saved to store: %s (%s)", event.type, event.id)

    async def _fetch(self, sql: str, params: tuple | list = ()) -> list[Event]:
        conn = self._require_conn()
        cursor = await conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [_row_to_event(row) for row in rows]

    async def get_event(self, event_id: str) -> Event | None:
        events = await self._fetch(f"SELECT {_COLUMNS} FROM events WHERE id = ?", (event_id,))
        return events[0] if events else None

    async def get_events(
        self, event_type: str | None = None, limit: int = 100, offset: int = 0
    ) -> list[Event]:
        """Most recent first, optionally filtered by type."""
        where = "WHERE type = ?" if event_type else ""
        params: list[Any] = [event_type] if event_type else []
        return await self._fetch(
            f"SELECT {_COLUMNS} FROM events {where} "
            "ORDER BY created_at DESC, seq DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )

    async def get_events_by_correlation_id(self, correlation_id: str) -> list[Event]:
        """Every event sharing a correlation root, oldest first."""
        return await self._fetch(
            f"SELECT {_COLUMNS} FROM events WHERE correlation_id = ? "
            "ORDER BY created_at, seq",
            (correlation_id,),
        )

    async def get_events_by_date_range(
        self,
        start: datetime | str | float,
        end: datetime | str | float,
        event_type: str | None = None,
    ) -> list[Event]:
        """Events with start <= created_at <= end, most recent first."""
        sql = f"SELECT {_COLUMNS} FROM events WHERE created_at >= ? AND created_at <= ?"
        params: list[Any] = [_to_epoch(start), _to_epoch(end)]
        if event_type:
            sql += " AND type = ?"
            params.append(event_type)
        return await self._fetch(sql + " ORDER BY created_at DESC, seq DESC", params)

    async def get_unprocessed_events(self, limit: int = 100) -> list[Event]:
        """Oldest unprocessed events first, for polling reconcilers."""
        return await self._fetch(
            f"SELECT {_COLUMNS} FROM events WHERE processed = 0 "
            "ORDER BY created_at, seq LIMIT ?",
            (limit,),
        )

    async def mark_event_as_processed(self, event_id: str) -> bool:
        """Set processed flag. Returns False if the event does not exist."""
        conn = self._require_conn()
        cursor = await conn.execute(
            "UPDATE events SET processed = 1, processed_at = ? WHERE id = ?",
            (time.time(), event_id),
        )
        updated = (cursor.rowcount or 0) > 0
        if updated:
            logger.debug("Event marked as processed: %s", event_id)
        return updated

    async def add_processing_error(
        self, event_id: str, error: str, retry_count: int = 1
    ) -> None:
        """Record a processing failure note for an event. Does not touch the event row."""
        conn = self._require_conn()
        await conn.execute(
            """
            INSERT INTO event_processing_errors (event_id, error, retry_count, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (event_id, error, retry_count, time.time()),
        )
        logger.debug("Processing error added for event: %s", event_id)

    async def get_processing_errors(self, event_id: str) -> list[dict[str, Any]]:
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT error, retry_count, created_at FROM event_processing_errors
            WHERE event_id = ? ORDER BY id
            """,
            (event_id,),
        )
        rows = await cursor.fetchall()
        return [
            {"error": row[0], "retry_count": row[1], "timestamp": _iso(row[2])}
            for row in rows
        ]

    async def get_event_stats(self, recent_limit: int = 10) -> dict[str, Any]:
        """Totals, per-type breakdown, processed/unprocessed split and recent events."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT type, COUNT(*), COALESCE(SUM(processed), 0), MAX(created_at)
            FROM events GROUP BY type ORDER BY COUNT(*) DESC, type
            """
        )
        by_type: dict[str, dict[str, Any]] = {}
        total = 0
        total_processed = 0
        for event_type, count, processed, last in await cursor.fetchall():
            by_type[event_type] = {
                "count": count,
                "processed": processed,
                "unprocessed": count - processed,
                "last_event": _iso(last),
            }
            total += count
            total_processed += processed
        recent = await self.get_events(limit=recent_limit)
        return {
            "total_events": total,
            "events_by_type": by_type,
            "events_by_status": {
                "processed": total_processed,
                "unprocessed": total - total_processed,
            },
            "recent_events": recent,
        }

    async def health_check(self) -> bool:
        """Lightweight connectivity probe. Never raises."""
        if self._conn is None:
            return False
        try:
            cursor = await self._conn.execute("SELECT 1")
            await cursor.fetchone()
            return True
        except (aiosqlite.Error, ValueError) as e:
            logger.error("EventStore health check failed: %s", e)
            return False
