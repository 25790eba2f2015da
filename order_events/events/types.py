"""Recognized event types, payload schemas and priorities.

Every type is grouped by a domain prefix (user, order, system, notification,
inventory). Publishers validate type and payload here before calling the bus;
the bus itself trusts its input.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

logger = logging.getLogger(__name__)


class UserEvents:
    CREATED = "user.created"
    UPDATED = "user.updated"
    DELETED = "user.deleted"
    LOGIN = "user.login"
    LOGOUT = "user.logout"


class OrderEvents:
    CREATED = "order.created"
    UPDATED = "order.updated"
    CANCELLED = "order.cancelled"
    COMPLETED = "order.completed"
    PAYMENT_PROCESSED = "order.payment.processed"
    PAYMENT_FAILED = "order.payment.failed"
    PAYMENT_REFUNDED = "order.payment.refunded"
    SHIPPED = "order.shipped"
    DELIVERED = "order.delivered"


class SystemEvents:
    STARTUP = "system.startup"
    SHUTDOWN = "system.shutdown"
    ERROR = "system.error"
    HEALTH_CHECK = "system.health.check"


class NotificationEvents:
    EMAIL_SENT = "notification.email.sent"
    SMS_SENT = "notification.sms.sent"
    PUSH_SENT = "notification.push.sent"
    FAILED = "notification.failed"


class InventoryEvents:
    UPDATED = "inventory.updated"
    LOW_STOCK = "inventory.low.stock"
    OUT_OF_STOCK = "inventory.out.of.stock"
    RESTOCKED = "inventory.restocked"


class EventPriority(IntEnum):
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


def _values(group: type) -> frozenset[str]:
    return frozenset(
        v for k, v in vars(group).items() if not k.startswith("_") and isinstance(v, str)
    )


_CATEGORIES: dict[str, frozenset[str]] = {
    "user": _values(UserEvents),
    "order": _values(OrderEvents),
    "system": _values(SystemEvents),
    "notification": _values(NotificationEvents),
    "inventory": _values(InventoryEvents),
}

ALL_EVENT_TYPES: frozenset[str] = frozenset().union(*_CATEGORIES.values())

# Payload contracts: required fields must be present and not None.
EVENT_SCHEMAS: dict[str, dict[str, tuple[str, ...]]] = {
    UserEvents.CREATED: {
        "required": ("userId", "email", "username"),
        "optional": ("firstName", "lastName", "role"),
    },
    UserEvents.UPDATED: {
        "required": ("userId",),
        "optional": ("email", "username", "firstName", "lastName", "role", "updatedFields"),
    },
    UserEvents.DELETED: {
        "required": ("userId",),
        "optional": ("reason", "email"),
    },
    OrderEvents.CREATED: {
        "required": ("orderId", "userId", "items", "totalAmount"),
        "optional": ("orderNumber", "shippingAddress", "paymentMethod", "notes"),
    },
    OrderEvents.UPDATED: {
        "required": ("orderId",),
        "optional": (
            "orderNumber",
            "userId",
            "status",
            "items",
            "totalAmount",
            "shippingAddress",
            "updatedFields",
        ),
    },
    OrderEvents.CANCELLED: {
        "required": ("orderId", "reason"),
        "optional": ("orderNumber", "userId", "refundAmount", "cancelledBy"),
    },
    InventoryEvents.UPDATED: {
        "required": ("productId", "quantity", "operation"),
        "optional": ("reason", "location"),
    },
}


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def is_valid_type(event_type: str) -> bool:
    """True if event_type belongs to the closed set of recognized types."""
    return event_type in ALL_EVENT_TYPES


def get_event_category(event_type: str) -> str:
    for category, types in _CATEGORIES.items():
        if event_type in types:
            return category
    return "unknown"


def validate_data(event_type: str, data: dict[str, Any]) -> ValidationResult:
    """Check payload against the per-type schema. Types without a schema always pass.

    Unknown fields are reported in the log only, never as errors.
    """
    schema = EVENT_SCHEMAS.get(event_type)
    if schema is None:
        return ValidationResult(valid=True)
    if not isinstance(data, dict):
        return ValidationResult(valid=False, errors=["Event data must be a mapping"])

    errors = [
        f"Missing required field: {name}"
        for name in schema["required"]
        if data.get(name) is None
    ]
    allowed = set(schema["required"]) | set(schema.get("optional", ()))
    for name in data:
        if name not in allowed:
            logger.warning("Unknown field in %s event data: %s", event_type, name)
    return ValidationResult(valid=not errors, errors=errors)
