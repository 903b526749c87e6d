import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.models import NotificationRecord, ServiceRequestRecord
from app.services.subscriptions import SubscriptionHub, topic_for


def _record(status="assigned", dispatcher_id="disp-1", user_id="cust-1"):
    return ServiceRequestRecord(
        id="req_sub",
        user_id=user_id,
        dependant_id="dep_1",
        parent_name="Mona",
        location="Tyre",
        service_id="grocery",
        service_title="Grocery Shopping",
        category="ESSENTIALS",
        expat_price=30,
        runner_payout=20,
        status=status,
        assigned_dispatcher_id=dispatcher_id,
        created_at="2026-01-01T00:00:00+00:00",
        updated_at="2026-01-01T00:00:00+00:00",
    )


def test_topic_for():
    assert topic_for("owner", "cust-1") == "owner:cust-1"
    assert topic_for("admin") == "admin:*"
    with pytest.raises(ValueError):
        topic_for("owner")
    with pytest.raises(ValueError):
        topic_for("everyone", "x")


def test_request_events_reach_owner_dispatcher_and_admin_only():
    hub = SubscriptionHub()
    owner = hub.subscribe("owner", "cust-1")
    other_owner = hub.subscribe("owner", "cust-2")
    dispatcher = hub.subscribe("dispatcher", "disp-1")
    other_dispatcher = hub.subscribe("dispatcher", "disp-2")
    admin = hub.subscribe("admin")

    hub.publish_request(_record(), "created")

    for subscription in (owner, dispatcher, admin):
        event = subscription.get(timeout=0.1)
        assert event is not None
        assert event.kind == "request"
        assert event.request.id == "req_sub"
    assert other_owner.get(timeout=0.01) is None
    assert other_dispatcher.get(timeout=0.01) is None


def test_notification_events_reach_mailbox():
    hub = SubscriptionHub()
    with hub.subscribe("mailbox", "cust-1") as mailbox:
        hub.publish_notification(
            NotificationRecord(
                id="ntf_1",
                user_id="cust-1",
                title="Dispatched",
                message="Grocery Shopping for Mona assigned to Samer.",
                category="request",
                created_at="2026-01-01T00:00:00+00:00",
            )
        )
        event = mailbox.get(timeout=0.1)

    assert event.kind == "notification"
    assert event.notification.title == "Dispatched"


def test_slow_subscriber_drops_oldest():
    hub = SubscriptionHub(max_pending=2)
    subscription = hub.subscribe("admin")

    for status in ("assigned", "in_progress", "completed"):
        hub.publish_request(_record(status=status), "updated")

    events = subscription.drain()
    assert [e.request.status for e in events] == ["in_progress", "completed"]
    assert subscription.dropped == 1


def test_close_unsubscribes_and_stops_delivery():
    hub = SubscriptionHub()
    subscription = hub.subscribe("owner", "cust-1")
    assert hub.subscriber_count("owner:cust-1") == 1

    subscription.close()
    subscription.close()
    hub.publish_request(_record(), "updated")

    assert subscription.closed is True
    assert subscription.drain() == []
    assert hub.subscriber_count() == 0
