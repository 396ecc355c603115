"""
Order event channel - in-process publish/subscribe for operator screens.

Publishers emit typed OrderEvent objects after their transaction commits.
Each subscriber owns a queue and receives events in arrival order;
unsubscribing is how a listener cancels.
"""
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

ORDER_CREATED = 'order.created'
ORDER_STATUS_CHANGED = 'order.status_changed'
ORDER_TRACKING_UPDATED = 'order.tracking_updated'
ORDER_SHIPMENT_UPDATED = 'order.shipment_updated'
STOCK_RESTORED = 'order.stock_restored'


@dataclass(frozen=True)
class OrderEvent:
    type: str
    order_id: str
    status: Optional[str] = None
    previous_status: Optional[str] = None
    tracking_code: Optional[str] = None
    source: str = 'system'
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            'type': self.type,
            'order_id': self.order_id,
            'status': self.status,
            'previous_status': self.previous_status,
            'tracking_code': self.tracking_code,
            'source': self.source,
            'occurred_at': self.occurred_at.isoformat(),
        }


class Subscription:
    """A listener's handle on the channel."""

    def __init__(self, channel: 'OrderEventChannel', maxsize: int = 1000):
        self._channel = channel
        self._queue: "queue.Queue[OrderEvent]" = queue.Queue(maxsize=maxsize)
        self.active = True

    def _deliver(self, event: OrderEvent) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[OrderEvent]:
        """Next event, or None when nothing arrived within timeout."""
        try:
            return self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> List[OrderEvent]:
        events = []
        while True:
            event = self.get()
            if event is None:
                return events
            events.append(event)

    def listen(self, timeout: float = 15.0) -> Iterator[Optional[OrderEvent]]:
        """Yield events as they arrive; yields None on each idle timeout (keep-alive)."""
        while self.active:
            yield self.get(timeout=timeout)

    def unsubscribe(self) -> None:
        self._channel.unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.unsubscribe()


class OrderEventChannel:
    """Fan-out of order events to every active subscription."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[int, Subscription] = {}

    def subscribe(self, maxsize: int = 1000) -> Subscription:
        subscription = Subscription(self, maxsize=maxsize)
        with self._lock:
            self._subscriptions[id(subscription)] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        with self._lock:
            self._subscriptions.pop(id(subscription), None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: OrderEvent) -> int:
        """Deliver to every subscriber; returns how many received it."""
        with self._lock:
            targets = list(self._subscriptions.values())
        delivered = 0
        for subscription in targets:
            if subscription._deliver(event):
                delivered += 1
            else:
                logger.warning(f"[EVENTS] Subscriber queue full, dropped {event.type} for order {event.order_id}")
        return delivered


order_events = OrderEventChannel()


def publish(event_type: str, order_id: str, **kwargs) -> int:
    """Publish on the process-wide order channel."""
    return order_events.publish(OrderEvent(type=event_type, order_id=order_id, **kwargs))
