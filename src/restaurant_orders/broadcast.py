"""
Канал рассылки событий о заказах подключённым клиентам (кухня, касса).

Каждый подписчик получает свою ограниченную очередь. publish() не блокируется:
событие кладётся во все очереди, и если очередь переполнена, подписчик его
пропускает и должен сам перечитать состояние.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    NEW_ORDER = "NEW_ORDER"
    ORDER_STATUS_UPDATED = "ORDER_STATUS_UPDATED"
    ORDERS_MERGED = "ORDERS_MERGED"
    ORDER_UPDATED = "ORDER_UPDATED"


@dataclass
class BroadcastEvent:
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def as_message(self) -> Dict[str, Any]:
        event_type = self.type.value if isinstance(self.type, enum.Enum) else self.type
        return {"type": event_type, "payload": self.payload}


class Subscription:
    """Очередь событий одного подписчика."""

    def __init__(self, maxsize: int):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    async def get(self) -> BroadcastEvent:
        return await self.queue.get()

    def get_nowait(self) -> Optional[BroadcastEvent]:
        try:
            return self.queue.get_nowait()
        except asyncio.QueueEmpty:
            return None


class BroadcastChannel:
    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscribers: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self._queue_size)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event: BroadcastEvent) -> int:
        """
        Рассылает событие всем текущим подписчикам.
        Возвращает количество подписчиков, получивших событие.
        """
        delivered = 0
        for subscription in list(self._subscribers):
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.warning("Subscriber queue full, dropping %s event", event.type)
        return delivered

    def close(self) -> None:
        self._subscribers.clear()
