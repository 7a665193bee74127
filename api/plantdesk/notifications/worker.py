"""Background consumer that keeps notification delivery off the request path."""

import asyncio
import logging
from typing import Optional, Set

from ..events import TransitionEvent

logger = logging.getLogger(__name__)


class NotificationWorker:
    """EventPublisher backed by an asyncio queue.

    `publish` never blocks and never raises; a full queue drops the event with
    an error log. Each event is dispatched in its own task so one slow fan-out
    does not hold up the next.
    """

    def __init__(self, dispatcher, maxsize: int = 1000):
        self.dispatcher = dispatcher
        self.maxsize = maxsize
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._runner: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._runner = asyncio.create_task(self._run())
        logger.info("Notification worker started")

    def publish(self, event: TransitionEvent) -> None:
        if self._queue is None or self._loop is None or self._loop.is_closed():
            logger.warning(f"Notification worker not running; dropped {event.kind.value} for {event.ticket.ticket_number}")
            return
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is self._loop:
            self._enqueue(event)
        else:
            # sync route handlers run in a threadpool
            self._loop.call_soon_threadsafe(self._enqueue, event)

    def _enqueue(self, event: TransitionEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(f"Notification queue full; dropped {event.kind.value} for {event.ticket.ticket_number}")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            task = asyncio.create_task(self._dispatch(event))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            self._queue.task_done()

    async def _dispatch(self, event: TransitionEvent) -> None:
        try:
            await self.dispatcher.dispatch(event)
        except Exception:
            logger.exception(f"Notification dispatch failed for {event.ticket.ticket_number}")

    async def drain(self) -> None:
        """Wait until everything published so far has been dispatched."""
        if self._queue is None:
            return
        await self._queue.join()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self.drain()
        self._runner.cancel()
        try:
            await self._runner
        except asyncio.CancelledError:
            pass
        self._runner = None
        self._queue = None
        logger.info("Notification worker stopped")
