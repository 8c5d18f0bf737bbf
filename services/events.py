"""
In-process domain event queue.

Primary operations (sending a message) commit, then publish an event here; a
consumer task runs the side effects (mention notifications) later, so a
failing side effect never reaches the user action that caused it.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Type

from logging_config import get_logger

logger = get_logger("events")


@dataclass(frozen=True)
class MessagePosted:
    chat_id: str
    message_id: str
    sender_id: str
    sender_name: str
    content: str


Handler = Callable[[object], Awaitable[None]]


class DomainEventQueue:
    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)
        self._worker: Optional[asyncio.Task] = None

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event) -> None:
        self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _dispatch(self, event) -> None:
        for handler in self._handlers.get(type(event), []):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler failed for {type(event).__name__}: {e}",
                    exc_info=True,
                    extra={"data": {"handler": getattr(handler, "__name__", repr(handler))}}
                )

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())
            logger.info("Domain event consumer started")

    async def stop(self, timeout: float = 5.0) -> None:
        """Let the consumer finish what it holds (up to `timeout` seconds), then cancel it and drain the rest."""
        if self._worker is not None:
            if not self._worker.done():
                try:
                    await asyncio.wait_for(self._queue.join(), timeout)
                except asyncio.TimeoutError:
                    logger.warning("Domain event consumer did not finish before shutdown", extra={"data": {"pending": self.pending}})
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        # Whatever was still queued runs before shutdown completes
        await self.drain()
        logger.info("Domain event consumer stopped")

    async def drain(self) -> int:
        """Run every queued event now, in order. Returns how many were processed."""
        processed = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return processed
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()
            processed += 1
