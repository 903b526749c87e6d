"""Live change subscriptions for the customer, dispatcher, admin and mailbox views.

Each view subscribes to a topic; writers publish after their store write has
committed. Delivery is per-subscriber and unordered across subscribers, so two
views may observe the same pair of writes in different orders.
"""

import logging
import queue
from threading import Lock
from typing import Dict, List, Literal, Optional, Set
from uuid import uuid4

from app.models import ChangeEvent, NotificationRecord, ServiceRequestRecord
from app.services.request_store import utc_now_iso

logger = logging.getLogger(__name__)

View = Literal["owner", "dispatcher", "admin", "mailbox"]
VIEWS = {"owner", "dispatcher", "admin", "mailbox"}


def topic_for(view: str, key: Optional[str] = None) -> str:
    if view not in VIEWS:
        raise ValueError(f"Unknown view: {view}")
    if view == "admin":
        return "admin:*"
    if not key:
        raise ValueError(f"A key is required for the {view} view")
    return f"{view}:{key}"


class Subscription:
    def __init__(self, hub: "SubscriptionHub", topic: str, max_pending: int) -> None:
        self.id = f"sub_{uuid4().hex[:10]}"
        self.topic = topic
        self._hub = hub
        self._queue: "queue.Queue[ChangeEvent]" = queue.Queue(maxsize=max_pending)
        self._lock = Lock()
        self.dropped = 0
        self.closed = False

    def deliver(self, event: ChangeEvent) -> None:
        with self._lock:
            if self.closed:
                return
            while True:
                try:
                    self._queue.put_nowait(event)
                    return
                except queue.Full:
                    # Oldest event goes; writers never wait on a slow view.
                    try:
                        self._queue.get_nowait()
                        self.dropped += 1
                    except queue.Empty:
                        pass

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[ChangeEvent]:
        events: List[ChangeEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
        self._hub.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()


class SubscriptionHub:
    def __init__(self, max_pending: int = 100) -> None:
        self._lock = Lock()
        self._max_pending = max_pending
        self._topics: Dict[str, Set[Subscription]] = {}

    def subscribe(self, view: str, key: Optional[str] = None) -> Subscription:
        subscription = Subscription(self, topic_for(view, key), self._max_pending)
        with self._lock:
            self._topics.setdefault(subscription.topic, set()).add(subscription)
        logger.debug("subscribed %s to %s", subscription.id, subscription.topic)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._topics.get(subscription.topic)
            if not subscribers:
                return
            subscribers.discard(subscription)
            if not subscribers:
                self._topics.pop(subscription.topic, None)
        logger.debug("unsubscribed %s from %s", subscription.id, subscription.topic)

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._topics.get(topic, ()))
            return sum(len(subscribers) for subscribers in self._topics.values())

    def publish_request(self, record: ServiceRequestRecord, action: Literal["created", "updated"]) -> ChangeEvent:
        event = ChangeEvent(
            id=f"evt_{uuid4().hex[:10]}",
            kind="request",
            action=action,
            request=record,
            created_at=utc_now_iso(),
        )
        topics = [topic_for("owner", record.user_id), topic_for("admin")]
        if record.assigned_dispatcher_id:
            topics.append(topic_for("dispatcher", record.assigned_dispatcher_id))
        self._fan_out(topics, event)
        return event

    def publish_notification(self, record: NotificationRecord) -> ChangeEvent:
        event = ChangeEvent(
            id=f"evt_{uuid4().hex[:10]}",
            kind="notification",
            action="created",
            notification=record,
            created_at=utc_now_iso(),
        )
        self._fan_out([topic_for("mailbox", record.user_id)], event)
        return event

    def _fan_out(self, topics: List[str], event: ChangeEvent) -> None:
        with self._lock:
            targets = [sub for topic in topics for sub in self._topics.get(topic, ())]
        for subscription in targets:
            subscription.deliver(event)


subscription_hub = SubscriptionHub()
