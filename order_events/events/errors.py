"""Exceptions raised by the event store, bus and query service."""


class EventSystemError(Exception):
    """Base class for event system errors."""


class NotInitializedError(EventSystemError):
    """Operation invoked before a successful initialize()."""


class EventBusNotInitializedError(NotInitializedError):
    def __init__(self, message: str = "EventBus not initialized") -> None:
        super().__init__(message)


class EventStoreNotInitializedError(NotInitializedError):
    def __init__(self, message: str = "EventStore not initialized") -> None:
        super().__init__(message)


class EventPersistenceError(EventSystemError):
    """Store unreachable or write rejected. Always surfaced to the publisher."""


class EventValidationError(EventSystemError):
    """Unknown event type or malformed event data."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class EventNotFoundError(EventSystemError):
    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id
