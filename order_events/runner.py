"""Entry point for the event service process: bootstrap store, channel, bus and handlers."""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from order_events.events import (
    DistributionChannel,
    EventBus,
    EventStore,
    InMemoryChannel,
    RedisChannel,
)
from order_events.events.types import SystemEvents
from order_events.handlers import EventHandlerManager
from order_events.logging_config import setup_logging
from order_events.settings import get_setting, load_settings

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def build_channel(settings: dict[str, Any]) -> DistributionChannel:
    backend = get_setting(settings, "channel.backend", "memory")
    if backend == "redis":
        return RedisChannel(
            url=get_setting(settings, "channel.url"),
            prefix=get_setting(settings, "channel.prefix", "events"))
    if backend != "memory":
        raise ValueError(f"Unknown channel backend: {backend}")
    return InMemoryChannel()


def build_event_bus(settings: dict[str, Any], project_root: Path = _PROJECT_ROOT) -> EventBus:
    store_cfg = settings.get("event_store", {})
    bus_cfg = settings.get("event_bus", {})
    db_path = store_cfg.get("db_path", "data/events.db")
    if db_path != ":memory:":
        db_path = project_root / db_path
    return EventBus(
        store=EventStore(db_path, busy_timeout=store_cfg.get("busy_timeout", 5000)),
        channel=build_channel(settings),
        default_max_retries=bus_cfg.get("max_retries", 3),
        default_retry_delay=bus_cfg.get("retry_delay", 1.0),
    )


def _install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt path in main()


async def main_async() -> None:
    """Bootstrap: settings -> logging -> bus.initialize -> handlers -> wait for shutdown."""
    settings = load_settings()
    setup_logging(_PROJECT_ROOT, settings)
    bus = build_event_bus(settings)
    await bus.initialize()
    manager = EventHandlerManager(bus)
    manager.initialize()

    shutdown_event = asyncio.Event()
    _install_signal_handlers(shutdown_event)
    await bus.publish(SystemEvents.STARTUP, {"pid": os.getpid()}, {"source": "system"})
    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        try:
            await bus.publish(SystemEvents.SHUTDOWN, {"pid": os.getpid()}, {"source": "system"})
        except Exception as e:
            logger.error("Failed to publish shutdown event: %s", e)
        await bus.stop(
            drain=True,
            timeout=get_setting(settings, "event_bus.shutdown_drain_timeout", 10.0),
        )


def main() -> None:
    """Synchronous entry for the event service process."""
    load_dotenv(_PROJECT_ROOT / ".env")
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        pass


__all__ = ["build_channel", "build_event_bus", "main"]
