import os
import random
import sys
from types import SimpleNamespace

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.models import DependantCreateRequest
from app.services.assignment import RandomAssignmentPolicy
from app.services.errors import (
    InvalidTransitionError,
    LifecycleConflictError,
    LifecycleForbiddenError,
    LifecycleNotFoundError,
    LifecycleValidationError,
    NoDispatcherAvailableError,
)
from app.services.lifecycle import RequestLifecycle
from app.services.notification_store import NotificationStore
from app.services.reassurance import ReassuranceWriter, fallback_message
from app.services.request_store import RequestStore
from app.services.subscriptions import SubscriptionHub


class _NullSender:
    enabled = False

    def send(self, tokens, title, body, data):
        return []


class _FakeResponses:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = 0

    def create(self, **kwargs):
        self.calls += 1
        if self.error:
            raise self.error
        return SimpleNamespace(output_text=self.text)


class _FixedPolicy:
    name = "fixed"

    def __init__(self, dispatcher_id):
        self.dispatcher_id = dispatcher_id

    def pick(self, request, directory):
        if not directory:
            raise NoDispatcherAvailableError("No dispatchers are available right now")
        return self.dispatcher_id


def _unreachable_llm():
    return SimpleNamespace(responses=_FakeResponses(error=ConnectionError("llm unreachable")))


def _build(tmp_path, policy=None, client=None):
    db_path = str(tmp_path / "wasil.sqlite3")
    hub = SubscriptionHub()
    store = RequestStore(db_path=db_path)
    notifications = NotificationStore(db_path=db_path, hub=hub, sender=_NullSender())
    lifecycle = RequestLifecycle(
        store=store,
        notifications=notifications,
        policy=policy or RandomAssignmentPolicy(rng=random.Random(7)),
        writer=ReassuranceWriter(client=client or _unreachable_llm()),
        hub=hub,
        admin_user_ids={"ops-admin"},
    )
    dependant = store.create_dependant(
        DependantCreateRequest(user_id="cust-1", name="Mona", location="Jounieh", gender="Female")
    )
    return lifecycle, dependant


def test_create_assigns_dispatcher_and_prices_with_markup(tmp_path):
    lifecycle, dependant = _build(tmp_path)

    record = lifecycle.create_request("cust-1", dependant.id, "wifi-fix", notes="Router keeps dropping")

    assert record.status == "assigned"
    assert record.assigned_dispatcher_id in {"disp-1", "disp-2"}
    assert record.expat_price == 30.0
    assert record.runner_payout == 20.0
    assert record.parent_name == "Mona"
    assert record.location == "Jounieh"

    stored = lifecycle.store.get_request(record.id)
    assert stored == record

    history = lifecycle.store.list_status_history(record.id)
    assert [(h.from_status, h.to_status) for h in history] == [("none", "requested"), ("requested", "assigned")]


def test_create_writes_exactly_one_notification(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-2"))

    record = lifecycle.create_request("cust-1", dependant.id, "grocery")

    mailbox = lifecycle.notifications.list_for_user("cust-1")
    assert len(mailbox) == 1
    assert mailbox[0].title == "Dispatched"
    assert mailbox[0].message == "Grocery Shopping for Mona assigned to Rami."
    assert mailbox[0].request_id == record.id
    assert mailbox[0].read is False


def test_unreachable_llm_uses_fallback_and_request_still_succeeds(tmp_path):
    lifecycle, dependant = _build(tmp_path)

    record = lifecycle.create_request("cust-1", dependant.id, "cleaning")

    assert record.ai_reassurance == fallback_message("assigned")
    assert lifecycle.store.get_request(record.id) is not None


def test_llm_text_is_attached_when_available(tmp_path):
    client = SimpleNamespace(responses=_FakeResponses(text="  Your mother is in safe hands.  "))
    lifecycle, dependant = _build(tmp_path, client=client)

    record = lifecycle.create_request("cust-1", dependant.id, "cleaning")

    assert record.ai_reassurance == "Your mother is in safe hands."
    assert client.responses.calls == 1


def test_explicit_price_overrides_markup(tmp_path):
    lifecycle, dependant = _build(tmp_path)

    record = lifecycle.create_request("cust-1", dependant.id, "wifi-fix", price=100)

    assert record.expat_price == 100.0
    assert record.runner_payout == 20.0


def test_cancel_halves_price_once(tmp_path):
    lifecycle, dependant = _build(tmp_path)
    record = lifecycle.create_request("cust-1", dependant.id, "wifi-fix", price=100)

    cancelled = lifecycle.cancel_request(record.id, "Change of plans", "cust-1")
    assert cancelled.status == "cancelled"
    assert cancelled.expat_price == 50.0
    assert cancelled.cancellation_reason == "Change of plans"

    again = lifecycle.cancel_request(record.id, "Change of plans", "cust-1")
    assert again.status == "cancelled"
    assert again.expat_price == 50.0
    assert lifecycle.store.get_request(record.id).expat_price == 50.0

    titles = [n.title for n in lifecycle.notifications.list_for_user("cust-1")]
    assert titles == ["Request cancelled", "Dispatched"]


def test_cancel_requires_reason(tmp_path):
    lifecycle, dependant = _build(tmp_path)
    record = lifecycle.create_request("cust-1", dependant.id, "wifi-fix")

    with pytest.raises(LifecycleValidationError):
        lifecycle.cancel_request(record.id, "   ", "cust-1")
    assert lifecycle.store.get_request(record.id).status == "assigned"


def test_advance_status_to_cancelled_applies_fee(tmp_path):
    lifecycle, dependant = _build(tmp_path)
    record = lifecycle.create_request("cust-1", dependant.id, "wifi-fix", price=80)

    cancelled = lifecycle.advance_status(record.id, "cancelled", "ops-admin", note="Parent no longer available at this time")

    assert cancelled.status == "cancelled"
    assert cancelled.expat_price == 40.0


def test_full_progression_and_completed_is_terminal(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-1"))
    record = lifecycle.create_request("cust-1", dependant.id, "solar-check")

    started = lifecycle.advance_status(record.id, "in_progress", "disp-1")
    assert started.status == "in_progress"
    assert started.ai_reassurance == fallback_message("in_progress")

    completed = lifecycle.advance_status(record.id, "completed", "disp-1")
    assert completed.status == "completed"

    with pytest.raises(InvalidTransitionError):
        lifecycle.advance_status(record.id, "in_progress", "disp-1")
    with pytest.raises(InvalidTransitionError):
        lifecycle.cancel_request(record.id, "Change of plans", "cust-1")
    assert lifecycle.store.get_request(record.id).status == "completed"

    mailbox = lifecycle.notifications.list_for_user("cust-1")
    assert [n.title for n in mailbox] == ["Mission Completed", "Mission In Progress", "Dispatched"]
    assert mailbox[0].message == "Samer has updated your Battery Health Check request to Completed."


def test_skipping_a_state_is_rejected(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-1"))
    record = lifecycle.create_request("cust-1", dependant.id, "solar-check")

    with pytest.raises(InvalidTransitionError):
        lifecycle.advance_status(record.id, "completed", "disp-1")
    assert len(lifecycle.notifications.list_for_user("cust-1")) == 1


def test_only_assigned_dispatcher_or_admin_can_advance(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-1"))
    record = lifecycle.create_request("cust-1", dependant.id, "solar-check")

    with pytest.raises(LifecycleForbiddenError):
        lifecycle.advance_status(record.id, "in_progress", "disp-2")
    with pytest.raises(LifecycleForbiddenError):
        lifecycle.advance_status(record.id, "in_progress", "cust-1")

    updated = lifecycle.advance_status(record.id, "in_progress", "ops-admin")
    assert updated.status == "in_progress"
    assert lifecycle.notifications.list_for_user("cust-1")[0].message.startswith("The Wasil operations team")


def test_only_owner_or_admin_can_cancel(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-1"))
    record = lifecycle.create_request("cust-1", dependant.id, "solar-check")

    with pytest.raises(LifecycleForbiddenError):
        lifecycle.cancel_request(record.id, "Change of plans", "disp-1")
    with pytest.raises(LifecycleForbiddenError):
        lifecycle.cancel_request(record.id, "Change of plans", "cust-2")
    assert lifecycle.store.get_request(record.id).status == "assigned"


def test_stale_conditional_write_is_rejected(tmp_path):
    lifecycle, dependant = _build(tmp_path)
    record = lifecycle.create_request("cust-1", dependant.id, "wifi-fix", price=100)

    with pytest.raises(InvalidTransitionError):
        lifecycle.store.update_request(
            record.id,
            expected_status="in_progress",
            changes={"status": "completed"},
            actor_user_id="ops-admin",
        )
    assert lifecycle.store.get_request(record.id).status == "assigned"


def test_empty_directory_fails_without_writing(tmp_path):
    lifecycle, dependant = _build(tmp_path)
    lifecycle.store.remove_dispatcher("disp-1")
    lifecycle.store.remove_dispatcher("disp-2")

    with pytest.raises(NoDispatcherAvailableError):
        lifecycle.create_request("cust-1", dependant.id, "wifi-fix")

    assert lifecycle.list_for_owner("cust-1") == []
    assert lifecycle.notifications.list_for_user("cust-1") == []


def test_create_validates_inputs(tmp_path):
    lifecycle, dependant = _build(tmp_path)

    with pytest.raises(LifecycleNotFoundError):
        lifecycle.create_request("cust-2", dependant.id, "wifi-fix")
    with pytest.raises(LifecycleValidationError):
        lifecycle.create_request("cust-1", dependant.id, "moon-landing")
    with pytest.raises(LifecycleValidationError):
        lifecycle.create_request("cust-1", dependant.id, "custom-request", custom_description=" ")
    with pytest.raises(LifecycleValidationError):
        lifecycle.create_request("cust-1", dependant.id, "wifi-fix", price=0)


def test_custom_request_keeps_description_in_notes(tmp_path):
    lifecycle, dependant = _build(tmp_path)

    record = lifecycle.create_request(
        "cust-1",
        dependant.id,
        "custom-request",
        notes="Ring twice",
        custom_description="Pick up documents from the municipality",
    )

    assert record.is_custom is True
    assert record.urgent_notes.startswith("Pick up documents from the municipality")
    assert "Ring twice" in record.urgent_notes


def test_views_are_scoped(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-2"))
    record = lifecycle.create_request("cust-1", dependant.id, "grocery")

    assert [r.id for r in lifecycle.list_for_owner("cust-1")] == [record.id]
    assert [r.id for r in lifecycle.list_for_dispatcher("disp-2")] == [record.id]
    assert lifecycle.list_for_dispatcher("disp-1") == []
    assert [r.id for r in lifecycle.list_all("ops-admin")] == [record.id]
    assert lifecycle.list_all("ops-admin", status="cancelled") == []

    with pytest.raises(LifecycleForbiddenError):
        lifecycle.list_all("cust-1")
    with pytest.raises(LifecycleForbiddenError):
        lifecycle.get_request(record.id, "cust-2")
    with pytest.raises(LifecycleNotFoundError):
        lifecycle.list_for_dispatcher("disp-9")

    assert lifecycle.get_request(record.id, "disp-2").id == record.id


def test_every_view_sees_the_change(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-1"))

    with lifecycle.hub.subscribe("owner", "cust-1") as owner, lifecycle.hub.subscribe(
        "dispatcher", "disp-1"
    ) as dispatcher, lifecycle.hub.subscribe("admin") as admin, lifecycle.hub.subscribe(
        "mailbox", "cust-1"
    ) as mailbox:
        record = lifecycle.create_request("cust-1", dependant.id, "solar-check")
        lifecycle.cancel_request(record.id, "Change of plans", "cust-1")

        for subscription in (owner, dispatcher, admin):
            events = subscription.drain()
            assert [(e.action, e.request.status) for e in events] == [("created", "assigned"), ("updated", "cancelled")]
        mail_events = mailbox.drain()
        assert [e.notification.title for e in mail_events] == ["Dispatched", "Request cancelled"]

    assert lifecycle.hub.subscriber_count() == 0


def test_resolve_actor_roles(tmp_path):
    lifecycle, _ = _build(tmp_path)

    assert lifecycle.resolve_actor("ops-admin").role == "admin"
    assert lifecycle.resolve_actor("disp-1").role == "dispatcher"
    assert lifecycle.resolve_actor("disp-1").display_name == "Samer"
    assert lifecycle.resolve_actor("cust-1").role == "customer"


def _open_request(lifecycle, dependant):
    """Store a request still waiting for a dispatcher, as older clients left them."""
    template = lifecycle.create_request("cust-1", dependant.id, "wifi-fix")
    record = template.model_copy(
        update={"id": "req_open", "status": "requested", "assigned_dispatcher_id": None, "ai_reassurance": None}
    )
    return lifecycle.store.insert_request(
        record, actor_user_id="cust-1", history=[("none", "requested", "request created")]
    )


def test_admin_assigns_open_request_through_policy(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-2"))
    record = _open_request(lifecycle, dependant)

    updated = lifecycle.advance_status(record.id, "assigned", "ops-admin")

    assert updated.status == "assigned"
    assert updated.assigned_dispatcher_id == "disp-2"
    assert lifecycle.get_request(record.id, "disp-2").id == record.id


def test_policy_picking_unknown_dispatcher_is_refused(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-2"))
    record = _open_request(lifecycle, dependant)
    lifecycle.policy = _FixedPolicy("disp-9")

    with pytest.raises(LifecycleConflictError):
        lifecycle.advance_status(record.id, "assigned", "ops-admin")
    stored = lifecycle.store.get_request(record.id)
    assert stored.status == "requested"
    assert stored.assigned_dispatcher_id is None

    with pytest.raises(LifecycleConflictError):
        lifecycle.create_request("cust-1", dependant.id, "grocery")
    assert len(lifecycle.list_for_owner("cust-1")) == 2


def test_dispatcher_claims_open_request(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-2"))
    record = _open_request(lifecycle, dependant)

    claimed = lifecycle.advance_status(record.id, "assigned", "disp-1")

    assert claimed.assigned_dispatcher_id == "disp-1"
    assert record.id in [r.id for r in lifecycle.list_for_dispatcher("disp-1")]
    with pytest.raises(LifecycleForbiddenError):
        lifecycle.advance_status(record.id, "in_progress", "disp-2")


def test_second_claim_loses_the_race(tmp_path, monkeypatch):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-2"))
    record = _open_request(lifecycle, dependant)
    stale = lifecycle.store.get_request(record.id)

    lifecycle.advance_status(record.id, "assigned", "disp-1")
    # disp-2 read the request before disp-1's claim landed.
    monkeypatch.setattr(lifecycle.store, "get_request", lambda _request_id: stale)

    with pytest.raises(InvalidTransitionError):
        lifecycle.advance_status(record.id, "assigned", "disp-2")
    monkeypatch.undo()
    assert lifecycle.store.get_request(record.id).assigned_dispatcher_id == "disp-1"
    history = lifecycle.store.list_status_history(record.id)
    assert [(h.from_status, h.to_status) for h in history] == [("none", "requested"), ("requested", "assigned")]


def test_back_to_back_requests_reach_every_view(tmp_path):
    lifecycle, dependant = _build(tmp_path, policy=_FixedPolicy("disp-1"))

    with lifecycle.hub.subscribe("owner", "cust-1") as owner, lifecycle.hub.subscribe(
        "dispatcher", "disp-1"
    ) as dispatcher:
        first = lifecycle.create_request("cust-1", dependant.id, "wifi-fix")
        second = lifecycle.create_request("cust-1", dependant.id, "grocery")

        for subscription in (owner, dispatcher):
            assert [e.request.id for e in subscription.drain()] == [first.id, second.id]

    expected = {first.id, second.id}
    assert {r.id for r in lifecycle.list_for_owner("cust-1")} == expected
    assert {r.id for r in lifecycle.list_for_dispatcher("disp-1")} == expected
    assert len(lifecycle.notifications.list_for_user("cust-1")) == 2
