"""Business subscribers. Registered once at startup against a ready EventBus."""

import logging

from order_events.events import EventBus
from order_events.handlers.orders import OrderEventHandlers
from order_events.handlers.users import UserEventHandlers

logger = logging.getLogger(__name__)


class EventHandlerManager:
    """Registers every handler group on the bus."""

    def __init__(self, bus: EventBus, **order_options) -> None:
        self._bus = bus
        self._order_options = order_options
        self.handlers: list[object] = []
        self._ready = False

    def initialize(self) -> None:
        if self._ready:
            return
        groups = [UserEventHandlers(self._bus), OrderEventHandlers(self._bus, **self._order_options)]
        for group in groups:
            group.register()
        self.handlers = groups
        self._ready = True
        logger.info("Event handlers initialized: %d groups", len(groups))

    def is_ready(self) -> bool:
        return self._ready


__all__ = ["EventHandlerManager", "OrderEventHandlers", "UserEventHandlers"]
