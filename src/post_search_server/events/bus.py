"""
In-process event bus and delivery worker.

The webhook route publishes admitted events here and returns immediately;
a background worker hands each event to the indexing dispatcher.

Delivery is at-least-once: when the dispatcher raises, the event is
re-published with ``attempt + 1`` after a linear backoff, up to
``max_attempts``. Events that exhaust their attempts are logged and parked
in ``dead_letters``, which keeps only the most recent ``dead_letter_limit``.
"""

import asyncio
import logging
from collections import deque
from typing import Optional, Protocol, Set, Any, Mapping

from .models import BusEvent
from ..core.errors import EventBusFull

logger = logging.getLogger("post_search.bus")


class EventHandler(Protocol):
    async def dispatch(self, detail_type: str, detail: Mapping[str, Any]) -> None:
        ...


class EventBus:
    """Queue of bus events plus the retry policy applied by the worker."""

    def __init__(
        self,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        maxsize: int = 0,
        dead_letter_limit: int = 100,
    ):
        self._queue: asyncio.Queue[BusEvent] = asyncio.Queue(maxsize=maxsize)
        self._max_attempts = max_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._redeliveries: Set[asyncio.Task] = set()
        self.dead_letters: deque[BusEvent] = deque(maxlen=dead_letter_limit)

    def publish(self, event: BusEvent) -> int:
        """Add an event to the queue. Returns current queue size."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as exc:
            raise EventBusFull(
                f"Event bus full; cannot accept {event.detail_type.value}"
            ) from exc
        qsize = self._queue.qsize()
        logger.info(
            "Event published: %s %s (attempt %d, queue size %d)",
            event.detail_type.value,
            event.event_id,
            event.attempt,
            qsize,
        )
        return qsize

    def qsize(self) -> int:
        return self._queue.qsize()

    async def join(self) -> None:
        """Wait until every published event, including retries, is settled."""
        while True:
            await self._queue.join()
            if not self._redeliveries:
                return
            await asyncio.gather(*list(self._redeliveries), return_exceptions=True)

    async def run_worker(self, handler: EventHandler) -> None:
        """
        Consume events forever, handing each to ``handler.dispatch``.
        """
        logger.info("Event worker started.")

        while True:
            try:
                event = await self._queue.get()
            except asyncio.CancelledError:
                logger.info("Event worker cancelled.")
                break

            try:
                await self._deliver(event, handler)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: BusEvent, handler: EventHandler) -> None:
        try:
            await handler.dispatch(event.detail_type.value, event.detail)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Delivery of %s %s failed (attempt %d/%d)",
                event.detail_type.value,
                event.event_id,
                event.attempt,
                self._max_attempts,
            )
            self._schedule_retry(event)
        else:
            logger.info(
                "Delivered %s %s (attempt %d)",
                event.detail_type.value,
                event.event_id,
                event.attempt,
            )

    def _schedule_retry(self, event: BusEvent) -> None:
        if event.attempt >= self._max_attempts:
            logger.error(
                "Giving up on %s %s after %d attempts",
                event.detail_type.value,
                event.event_id,
                event.attempt,
            )
            self.dead_letters.append(event)
            return

        delay = self._retry_delay_seconds * event.attempt
        task = asyncio.create_task(self._redeliver(event.next_attempt(), delay))
        self._redeliveries.add(task)
        task.add_done_callback(self._redeliveries.discard)

    async def _redeliver(self, event: BusEvent, delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
        try:
            self.publish(event)
        except EventBusFull:
            logger.error(
                "Dropping retry of %s %s: event bus full",
                event.detail_type.value,
                event.event_id,
            )
            self.dead_letters.append(event)


def start_worker(bus: EventBus, handler: EventHandler) -> "asyncio.Task[None]":
    """Launch the bus worker as a background task on the running loop."""
    return asyncio.create_task(bus.run_worker(handler), name="event-bus-worker")


async def stop_worker(task: Optional["asyncio.Task[None]"]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
