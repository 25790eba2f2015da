"""Helpers shared by handler modules."""

from typing import Any

from order_events.events import Event, EventBus
from order_events.events.types import NotificationEvents


def derived_metadata(parent: Event, user_id: str | None = None) -> dict[str, Any]:
    """Metadata for an event caused by `parent`: same correlation root, causation = parent."""
    return {
        "correlation_id": parent.correlation_id,
        "causation_id": parent.id,
        "user_id": user_id or parent.data.get("userId") or parent.metadata.user_id,
    }


async def send_email(
    bus: EventBus,
    parent: Event,
    subject: str,
    template: str,
    data: dict[str, Any],
    priority: str = "normal",
    **recipient: Any,
) -> Event:
    payload = {**recipient, "subject": subject, "template": template, "data": data, "priority": priority}
    return await bus.publish(NotificationEvents.EMAIL_SENT, payload, derived_metadata(parent))
