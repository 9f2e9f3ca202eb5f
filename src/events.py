"""
Event Streaming - In-memory pub/sub for exposure lifecycle events.

Subscribers receive events as Server-Sent Events, so clients can watch
exposures converge without polling.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Exposure lifecycle events."""

    SUBMITTED = "SUBMITTED"
    RECONCILED = "RECONCILED"
    FAILED = "FAILED"
    DELETING = "DELETING"
    DELETED = "DELETED"


@dataclass
class ExposureEvent:
    """Event emitted when an exposure changes state."""

    event_type: EventType
    namespace: str
    name: str
    status: str
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc)
        .isoformat()
        .replace("+00:00", "Z")
    )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "namespace": self.namespace,
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    def to_sse(self) -> str:
        """
        Format the event as an SSE message.

        Returns:
            SSE-formatted string with event type and JSON data lines.
        """
        json_data = json.dumps(self.to_dict(), default=str)
        return f"event: {self.event_type.value}\ndata: {json_data}\n\n"


class EventSubscription:
    """
    Async iterator over the events delivered to one subscriber.

    A ``None`` sentinel on the queue ends iteration.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        filter_fn: Optional[Callable[[ExposureEvent], bool]] = None,
    ):
        self._queue = queue
        self._filter_fn = filter_fn

    def __aiter__(self) -> AsyncIterator[ExposureEvent]:
        return self

    async def __anext__(self) -> ExposureEvent:
        while True:
            event = await self._queue.get()
            if event is None:
                raise StopAsyncIteration
            if self._filter_fn is None or self._filter_fn(event):
                return event


class EventBus:
    """
    Fan-out of exposure events to any number of subscribers.

    Each subscriber owns a bounded ``asyncio.Queue``. Publishing never
    blocks; a subscriber whose queue is full misses the event.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: ExposureEvent) -> None:
        async with self._lock:
            subscribers = list(self._subscribers.items())

        for subscriber_id, queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped {event.event_type.value} event for {event.key} "
                    f"(subscriber {subscriber_id}): queue full"
                )

    async def subscribe(
        self,
        filter_fn: Optional[Callable[[ExposureEvent], bool]] = None,
    ) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events.

        Args:
            filter_fn: Optional predicate; only events for which it
                returns ``True`` are yielded.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._subscribers[subscriber_id] = queue

        logger.info(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue, filter_fn)

    async def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber and end its iterator."""
        async with self._lock:
            queue = self._subscribers.pop(subscriber_id, None)

        if queue is None:
            return
        try:
            queue.put_nowait(None)
        except asyncio.QueueFull:
            # Drain one event so the sentinel fits
            queue.get_nowait()
            queue.put_nowait(None)
        logger.info(f"Unsubscribed: {subscriber_id}")

    def subscriber_count(self) -> int:
        return len(self._subscribers)
