"""User event handlers."""

import logging

from order_events.events import Event, EventBus, SubscribeOptions
from order_events.events.types import UserEvents
from order_events.handlers.common import send_email

logger = logging.getLogger(__name__)


class UserEventHandlers:
    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self.subscriber_ids: list[str] = []

    def register(self) -> list[str]:
        self.subscriber_ids = [
            self._bus.subscribe(
                UserEvents.CREATED,
                self.handle_user_created,
                SubscribeOptions(retry=True, max_retries=3, retry_delay=1.0),
            ),
            self._bus.subscribe(UserEvents.LOGIN, self.handle_user_login),
            self._bus.subscribe(UserEvents.UPDATED, self.handle_user_updated),
            self._bus.subscribe(UserEvents.DELETED, self.handle_user_deleted),
        ]
        logger.info("User event handlers registered")
        return self.subscriber_ids

    async def handle_user_created(self, event: Event) -> None:
        await send_email(
            self._bus,
            event,
            subject="Welcome to our platform!",
            template="welcome",
            data={
                "username": event.data.get("username"),
                "firstName": event.data.get("firstName"),
            },
            to=event.data.get("email"),
        )

    async def handle_user_login(self, event: Event) -> None:
        logger.info(
            "User login: %s from %s", event.data.get("userId"), event.data.get("ipAddress")
        )

    async def handle_user_updated(self, event: Event) -> None:
        if "email" in (event.data.get("updatedFields") or []):
            await send_email(
                self._bus,
                event,
                subject="Email address changed",
                template="email_changed",
                data={"userId": event.data.get("userId")},
                priority="high",
                to=event.data.get("email"),
            )

    async def handle_user_deleted(self, event: Event) -> None:
        await send_email(
            self._bus,
            event,
            subject="Account deletion confirmation",
            template="account_deleted",
            data={"reason": event.data.get("reason")},
            priority="high",
            to=event.data.get("email"),
        )
