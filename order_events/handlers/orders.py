"""Order event handlers: notifications, inventory and payment cascades for order.* events."""

import logging
import random
import time
from typing import Callable

from order_events.events import Event, EventBus, SubscribeOptions
from order_events.events.types import InventoryEvents, OrderEvents
from order_events.handlers.common import derived_metadata, send_email

logger = logging.getLogger(__name__)

_SIGNIFICANT_FIELDS = frozenset({"status", "items", "shippingAddress", "totalAmount"})


def simulated_payment_approval(event: Event) -> bool:
    """Stand-in for a payment processor: approves ~80% of orders."""
    return random.random() < 0.8


class OrderEventHandlers:
    """Subscribes to order events and publishes the derived events each one implies."""

    def __init__(
        self,
        bus: EventBus,
        approve_payment: Callable[[Event], bool] | None = None,
    ) -> None:
        self._bus = bus
        self._approve_payment = approve_payment or simulated_payment_approval
        self.subscriber_ids: list[str] = []

    def register(self) -> list[str]:
        sub = self._bus.subscribe
        self.subscriber_ids = [
            sub(
                OrderEvents.CREATED,
                self.handle_order_created,
                SubscribeOptions(retry=True, max_retries=3, retry_delay=1.0),
            ),
            sub(OrderEvents.UPDATED, self.handle_order_updated),
            sub(OrderEvents.CANCELLED, self.handle_order_cancelled),
            sub(OrderEvents.COMPLETED, self.handle_order_completed),
            sub(OrderEvents.SHIPPED, self.handle_order_shipped),
            sub(OrderEvents.PAYMENT_PROCESSED, self.handle_payment_processed),
            sub(OrderEvents.PAYMENT_FAILED, self.handle_payment_failed),
        ]
        logger.info("Order event handlers registered")
        return self.subscriber_ids

    async def handle_order_created(self, event: Event) -> None:
        logger.info(
            "Processing order created event: %s (%s)",
            event.data.get("orderNumber") or event.data.get("orderId"),
            event.id,
        )
        await self._send_order_confirmation(event)
        await self._adjust_inventory(event, sign=-1, operation="order_created")
        await self._process_payment(event)

    async def handle_order_updated(self, event: Event) -> None:
        updated = event.data.get("updatedFields") or []
        if _SIGNIFICANT_FIELDS.intersection(updated):
            await send_email(
                self._bus,
                event,
                subject=f"Order Update - {_order_label(event)}",
                template="order_updated",
                data={"orderNumber": _order_label(event), "updatedFields": updated},
                userId=event.data.get("userId"),
            )

    async def handle_order_cancelled(self, event: Event) -> None:
        logger.info(
            "Processing order cancelled event: %s reason=%s",
            _order_label(event),
            event.data.get("reason"),
        )
        await send_email(
            self._bus,
            event,
            subject=f"Order Cancelled - {_order_label(event)}",
            template="order_cancelled",
            data={"orderNumber": _order_label(event), "reason": event.data.get("reason")},
            priority="high",
            userId=event.data.get("userId"),
        )

    async def handle_order_completed(self, event: Event) -> None:
        await send_email(
            self._bus,
            event,
            subject=f"Order Delivered - {_order_label(event)}",
            template="order_completed",
            data={"orderNumber": _order_label(event)},
            userId=event.data.get("userId"),
        )
        points = int(event.data.get("totalAmount") or 0)
        logger.debug("Loyalty points for user %s: %d", event.data.get("userId"), points)

    async def handle_order_shipped(self, event: Event) -> None:
        await send_email(
            self._bus,
            event,
            subject=f"Order Shipped - {_order_label(event)}",
            template="order_shipped",
            data={"orderNumber": _order_label(event)},
            userId=event.data.get("userId"),
        )

    async def handle_payment_processed(self, event: Event) -> None:
        await send_email(
            self._bus,
            event,
            subject=f"Payment Confirmed - {_order_label(event)}",
            template="payment_confirmed",
            data={
                "orderNumber": _order_label(event),
                "paymentAmount": event.data.get("paymentAmount"),
            },
            priority="high",
            userId=event.data.get("userId"),
        )

    async def handle_payment_failed(self, event: Event) -> None:
        await send_email(
            self._bus,
            event,
            subject=f"Payment Failed - {_order_label(event)}",
            template="payment_failed",
            data={
                "orderNumber": _order_label(event),
                "failureReason": event.data.get("failureReason"),
            },
            priority="high",
            userId=event.data.get("userId"),
        )
        await self._adjust_inventory(event, sign=1, operation="payment_failed")

    async def _send_order_confirmation(self, event: Event) -> None:
        user_id = event.data.get("userId")
        if not user_id:
            logger.warning("Skipping order confirmation for event %s: no userId", event.id)
            return
        await send_email(
            self._bus,
            event,
            subject=f"Order Confirmation - {_order_label(event)}",
            template="order_confirmation",
            data={
                "orderNumber": _order_label(event),
                "items": event.data.get("items") or [],
                "totalAmount": event.data.get("totalAmount"),
                "orderDate": event.metadata.timestamp.isoformat(),
            },
            priority="high",
            userId=user_id,
        )

    async def _adjust_inventory(self, event: Event, sign: int, operation: str) -> None:
        """Publish one inventory.updated per item; sign=-1 reserves stock, +1 restores it."""
        items = event.data.get("items") or []
        if not items:
            logger.warning("Skipping inventory update for event %s: no items", event.id)
            return
        for item in items:
            if not item.get("productId") or not item.get("quantity"):
                continue
            await self._bus.publish(
                InventoryEvents.UPDATED,
                {
                    "productId": item["productId"],
                    "quantity": sign * item["quantity"],
                    "operation": operation,
                    "reason": f"{operation}: {_order_label(event)}",
                },
                derived_metadata(event),
            )

    async def _process_payment(self, event: Event) -> None:
        data = event.data
        base = {
            "orderId": data.get("orderId"),
            "orderNumber": data.get("orderNumber"),
            "userId": data.get("userId"),
            "items": data.get("items") or [],
            "paymentAmount": data.get("totalAmount"),
            "paymentMethod": data.get("paymentMethod"),
        }
        if self._approve_payment(event):
            await self._bus.publish(
                OrderEvents.PAYMENT_PROCESSED,
                {**base, "transactionId": f"txn_{int(time.time() * 1000)}"},
                derived_metadata(event),
            )
        else:
            await self._bus.publish(
                OrderEvents.PAYMENT_FAILED,
                {**base, "failureReason": "Insufficient funds"},
                derived_metadata(event),
            )


def _order_label(event: Event) -> str:
    return str(event.data.get("orderNumber") or event.data.get("orderId") or "unknown")
