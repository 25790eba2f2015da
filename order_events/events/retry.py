"""Background retry loops for failed subscriber invocations.

One loop per (event, subscriber) failure. Loops are tracked asyncio tasks,
so shutdown can drain or cancel them deterministically.
"""

import asyncio
import logging
from typing import Callable

from order_events.events.models import Event, Subscriber, invoke_handler

logger = logging.getLogger(__name__)


class RetryScheduler:
    """Schedules and tracks bounded, delayed re-invocations of a single handler."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()
        self.scheduled = 0
        self.succeeded = 0
        self.exhausted = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        event: Event,
        subscriber: Subscriber,
        is_active: Callable[[Subscriber], bool],
        attempts_made: int = 1,
    ) -> asyncio.Task[None] | None:
        """Start a retry loop unless the attempt budget is already spent.

        attempts_made counts invocations so far (1 = the initial dispatch).
        is_active is checked before every attempt; the loop aborts once it is False.
        """
        if attempts_made >= subscriber.options.max_retries:
            self._log_exhausted(event, subscriber, attempts_made)
            return None
        self.scheduled += 1
        task = asyncio.create_task(self._run(event, subscriber, is_active, attempts_made))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self,
        event: Event,
        subscriber: Subscriber,
        is_active: Callable[[Subscriber], bool],
        attempts_made: int,
    ) -> None:
        options = subscriber.options
        for attempt in range(attempts_made + 1, options.max_retries + 1):
            await asyncio.sleep(options.retry_delay)
            if not is_active(subscriber):
                logger.info(
                    "Retry aborted for event %s: subscriber %s no longer active",
                    event.id,
                    subscriber.id,
                )
                return
            try:
                await invoke_handler(subscriber.handler, event)
            except Exception as e:
                logger.warning(
                    "Event handler %s failed on attempt %d/%d for event %s (%s): %s",
                    subscriber.id,
                    attempt,
                    options.max_retries,
                    event.id,
                    event.type,
                    e,
                )
                continue
            self.succeeded += 1
            logger.info(
                "Event handler %s succeeded on attempt %d for event %s",
                subscriber.id,
                attempt,
                event.id,
            )
            return
        self._log_exhausted(event, subscriber, options.max_retries)

    def _log_exhausted(self, event: Event, subscriber: Subscriber, attempts: int) -> None:
        # No dead-letter record; the event stays recoverable via get_unprocessed_events
        self.exhausted += 1
        logger.error(
            "Event handler %s failed after %d attempts for event %s (%s)",
            subscriber.id,
            attempts,
            event.id,
            event.type,
        )

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for pending retry loops. Returns True if all finished within timeout."""
        if not self._tasks:
            return True
        _done, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not still_pending

    async def cancel_all(self) -> int:
        """Cancel every pending retry loop. Returns the number cancelled."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d pending retries", len(tasks))
        return len(tasks)
