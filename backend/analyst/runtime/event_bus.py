"""
Analyst Event Bus Implementation

Pub/Sub event system with bounded queue and backpressure handling.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Dict, List, Callable, AsyncIterator, Optional

from .types import AgentEvent, EventType
from ...utils.logger import get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Event bus for publishing and consuming agent events.

    Features:
    - Bounded queue with configurable size
    - Backpressure handling via queue blocking
    - Type-based event filtering
    - Multiple subscribers per event type
    """

    def __init__(self, maxsize: int = 1000, publish_timeout: float = 5.0):
        """
        Initialize event bus.

        Args:
            maxsize: Maximum queue size (default: 1000)
            publish_timeout: Seconds to wait for room in a full queue
        """
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._publish_timeout = publish_timeout
        self._running = False
        self._consumer_task: Optional[asyncio.Task] = None

    async def publish(self, event: AgentEvent) -> None:
        """
        Publish an event to the bus.

        Raises:
            asyncio.QueueFull: If the queue stays full for publish_timeout
        """
        try:
            await asyncio.wait_for(self._queue.put(event), timeout=self._publish_timeout)
        except asyncio.TimeoutError:
            logger.error("Event queue full, dropping event", event_type=event.type.value)
            raise asyncio.QueueFull("Event queue is full") from None

    async def subscribe(
        self,
        event_type: EventType,
        handler: Callable[[AgentEvent], None],
    ) -> None:
        """Subscribe a sync or async handler to events of one type."""
        self._subscribers[event_type].append(handler)
        logger.debug("Subscribed to events", event_type=event_type.value)

    async def unsubscribe(
        self,
        event_type: EventType,
        handler: Callable[[AgentEvent], None],
    ) -> None:
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug("Unsubscribed from events", event_type=event_type.value)

    async def consume(
        self,
        event_types: Optional[List[EventType]] = None,
        session_id: Optional[str] = None,
    ) -> AsyncIterator[AgentEvent]:
        """
        Consume events from the bus directly, bypassing subscribers.

        Events that do not match the filters are discarded.
        """
        while True:
            event = await self._queue.get()
            try:
                if event_types and event.type not in event_types:
                    continue
                if session_id and event.session_id != session_id:
                    continue
                yield event
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        """Start dispatching queued events to subscribers."""
        if self._running:
            logger.warning("EventBus already running")
            return

        self._running = True
        self._consumer_task = asyncio.create_task(self._consume_loop())
        logger.debug("EventBus started")

    async def stop(self) -> None:
        """Stop the dispatcher, delivering anything already queued first."""
        if not self._running:
            return

        self._running = False
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None
        while not self._queue.empty():
            await self._dispatch(self._queue.get_nowait())
            self._queue.task_done()
        logger.debug("EventBus stopped")

    async def _consume_loop(self) -> None:
        while self._running:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: AgentEvent) -> None:
        for handler in list(self._subscribers.get(event.type, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error in event handler", event_type=event.type.value)

    def qsize(self) -> int:
        """Return current queue size."""
        return self._queue.qsize()

    def is_running(self) -> bool:
        return self._running

    async def wait_empty(self) -> None:
        """Wait until all events are processed."""
        await self._queue.join()
