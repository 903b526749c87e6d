"""Service request lifecycle: create and assign, advance, cancel.

State machine::

    requested -> assigned -> in_progress -> completed
        \\           \\            \\
         +-----------+------------+--> cancelled

``completed`` and ``cancelled`` are terminal. Every successful state change
writes exactly one mailbox entry for the owning customer and publishes one
change event to the owner, dispatcher and admin views.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Set
from uuid import uuid4

from app.data import CANCELLATION_FEE_RATIO, CUSTOM_SERVICE_ID, MARKUP_PERCENTAGE
from app.models import ActorRole, Dispatcher, RequestStatusChange, ServiceRequestRecord
from app.services.assignment import AssignmentPolicy, policy_from_env
from app.services.errors import (
    InvalidTransitionError,
    LifecycleConflictError,
    LifecycleForbiddenError,
    LifecycleNotFoundError,
    LifecycleValidationError,
)
from app.services.notification_store import NotificationStore, notification_store
from app.services.reassurance import STATUS_LABELS, ReassuranceWriter, reassurance_writer
from app.services.request_store import RequestStore, request_store, utc_now_iso
from app.services.subscriptions import SubscriptionHub, subscription_hub

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, Set[str]] = {
    "requested": {"assigned", "cancelled"},
    "assigned": {"in_progress", "cancelled"},
    "in_progress": {"completed", "cancelled"},
}
TERMINAL_STATUSES = {"completed", "cancelled"}

DEFAULT_ADMIN_USERS = {"admin"}


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: ActorRole
    display_name: str


class RequestLifecycle:
    def __init__(
        self,
        store: RequestStore,
        notifications: NotificationStore,
        policy: AssignmentPolicy,
        writer: ReassuranceWriter,
        hub: SubscriptionHub,
        admin_user_ids: Optional[Set[str]] = None,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.policy = policy
        self.writer = writer
        self.hub = hub
        self.admin_user_ids = set(admin_user_ids if admin_user_ids is not None else DEFAULT_ADMIN_USERS)

    def resolve_actor(self, user_id: str) -> Actor:
        if user_id in self.admin_user_ids:
            return Actor(user_id=user_id, role="admin", display_name="The Wasil operations team")
        dispatcher = self.store.get_dispatcher(user_id)
        if dispatcher:
            return Actor(user_id=user_id, role="dispatcher", display_name=dispatcher.name)
        return Actor(user_id=user_id, role="customer", display_name=user_id)

    def require_admin(self, user_id: str) -> Actor:
        actor = self.resolve_actor(user_id)
        if actor.role != "admin":
            raise LifecycleForbiddenError("Only administrators can do this")
        return actor

    def create_request(
        self,
        customer_id: str,
        dependant_id: str,
        service_id: str,
        notes: str = "",
        price: Optional[float] = None,
        custom_description: str = "",
    ) -> ServiceRequestRecord:
        dependant = self.store.get_dependant(customer_id, dependant_id)
        if not dependant:
            raise LifecycleNotFoundError("Dependant not found")
        service = self.store.get_service_type(service_id)
        if not service:
            raise LifecycleValidationError("Unknown service")

        is_custom = service.id == CUSTOM_SERVICE_ID
        urgent_notes = notes.strip()
        if is_custom:
            if not custom_description.strip():
                raise LifecycleValidationError("Describe the custom request")
            urgent_notes = f"{custom_description.strip()}\n\nNotes: {urgent_notes}"

        if price is None:
            expat_price = round(service.base_price * (1 + MARKUP_PERCENTAGE), 2)
        elif price <= 0:
            raise LifecycleValidationError("price must be greater than 0")
        else:
            expat_price = round(price, 2)

        now = utc_now_iso()
        record = ServiceRequestRecord(
            id=f"req_{uuid4().hex[:12]}",
            user_id=customer_id,
            dependant_id=dependant.id,
            parent_name=dependant.name,
            location=dependant.location,
            service_id=service.id,
            service_title=service.title,
            category=service.category,
            urgent_notes=urgent_notes,
            is_custom=is_custom,
            expat_price=expat_price,
            runner_payout=round(service.base_price, 2),
            status="requested",
            created_at=now,
            updated_at=now,
        )

        # Assignment happens before the first write, so no stored record is ever unassigned.
        dispatcher = self._pick_dispatcher(record)
        record = record.model_copy(update={"status": "assigned", "assigned_dispatcher_id": dispatcher.id})
        record = record.model_copy(update={"ai_reassurance": self.writer.write(record, "assigned")})

        self.store.insert_request(
            record,
            actor_user_id=customer_id,
            history=[
                ("none", "requested", "request created"),
                ("requested", "assigned", f"assigned to {dispatcher.name} by {self.policy.name} policy"),
            ],
        )
        logger.info("request %s created for %s and assigned to %s", record.id, customer_id, dispatcher.id)

        self.notifications.create(
            user_id=customer_id,
            title="Dispatched",
            message=f"{record.service_title} for {record.parent_name} assigned to {dispatcher.name}.",
            category="request",
            request_id=record.id,
        )
        self.hub.publish_request(record, "created")
        return record

    def advance_status(
        self,
        request_id: str,
        new_status: str,
        actor_user_id: str,
        note: str = "",
    ) -> ServiceRequestRecord:
        if new_status == "cancelled":
            return self.cancel_request(request_id, note, actor_user_id)

        record = self._get_or_404(request_id)
        actor = self.resolve_actor(actor_user_id)
        is_assigned_dispatcher = actor.role == "dispatcher" and record.assigned_dispatcher_id == actor.user_id
        if actor.role != "admin" and not is_assigned_dispatcher:
            # An unassigned request may be claimed by any dispatcher.
            claiming = actor.role == "dispatcher" and record.status == "requested" and not record.assigned_dispatcher_id
            if not claiming:
                raise LifecycleForbiddenError("Only the assigned dispatcher or an administrator can update this request")

        current_status = record.status
        if new_status not in ALLOWED_TRANSITIONS.get(current_status, set()):
            raise InvalidTransitionError(f"Invalid status transition: {current_status} -> {new_status}")

        changes: Dict[str, object] = {"status": new_status}
        if new_status == "assigned" and not record.assigned_dispatcher_id:
            if actor.role == "dispatcher":
                changes["assigned_dispatcher_id"] = actor.user_id
            else:
                changes["assigned_dispatcher_id"] = self._pick_dispatcher(record).id
        if new_status == "in_progress":
            changes["ai_reassurance"] = self.writer.write(
                record.model_copy(update={"status": new_status}), new_status
            )

        updated = self.store.update_request(
            request_id,
            expected_status=current_status,
            changes=changes,
            actor_user_id=actor.user_id,
            note=note,
        )
        label = STATUS_LABELS[new_status]
        logger.info("request %s moved %s -> %s by %s (%s)", request_id, current_status, new_status, actor.user_id, actor.role)

        self.notifications.create(
            user_id=updated.user_id,
            title=f"Mission {label}",
            message=f"{actor.display_name} has updated your {updated.service_title} request to {label}.",
            category="request",
            request_id=updated.id,
        )
        self.hub.publish_request(updated, "updated")
        return updated

    def cancel_request(self, request_id: str, reason: str, actor_user_id: str) -> ServiceRequestRecord:
        record = self._get_or_404(request_id)
        actor = self.resolve_actor(actor_user_id)
        if actor.role != "admin" and actor.user_id != record.user_id:
            raise LifecycleForbiddenError("Only the customer or an administrator can cancel this request")

        if record.status == "cancelled":
            logger.info("request %s already cancelled; ignoring repeat cancel", request_id)
            return record
        if record.status == "completed":
            raise InvalidTransitionError("Invalid status transition: completed -> cancelled")
        if not reason.strip():
            raise LifecycleValidationError("A cancellation reason is required")

        # The fee is derived from the stored price once; the status guard keeps it from compounding.
        reduced_price = round(record.expat_price * CANCELLATION_FEE_RATIO, 2)
        try:
            updated = self.store.update_request(
                request_id,
                expected_status=record.status,
                changes={
                    "status": "cancelled",
                    "cancellation_reason": reason.strip(),
                    "expat_price": reduced_price,
                },
                actor_user_id=actor.user_id,
                note=reason.strip(),
            )
        except InvalidTransitionError:
            latest = self._get_or_404(request_id)
            if latest.status == "cancelled":
                return latest
            raise
        logger.info("request %s cancelled by %s; price %.2f -> %.2f", request_id, actor.user_id, record.expat_price, reduced_price)

        self.notifications.create(
            user_id=updated.user_id,
            title="Request cancelled",
            message=(
                f"{updated.service_title} for {updated.parent_name} was cancelled. "
                f"A cancellation fee of ${reduced_price:.2f} applies."
            ),
            category="request",
            request_id=updated.id,
        )
        self.hub.publish_request(updated, "updated")
        return updated

    def get_request(self, request_id: str, actor_user_id: str) -> ServiceRequestRecord:
        record = self._get_or_404(request_id)
        self._assert_can_view(record, actor_user_id)
        return record

    def list_history(self, request_id: str, actor_user_id: str) -> List[RequestStatusChange]:
        self.get_request(request_id, actor_user_id)
        return self.store.list_status_history(request_id)

    def list_for_owner(self, user_id: str) -> List[ServiceRequestRecord]:
        return self.store.list_requests(user_id=user_id)

    def list_for_dispatcher(self, dispatcher_id: str) -> List[ServiceRequestRecord]:
        if not self.store.get_dispatcher(dispatcher_id):
            raise LifecycleNotFoundError("Dispatcher not found")
        return self.store.list_requests(dispatcher_id=dispatcher_id)

    def list_all(self, actor_user_id: str, status: Optional[str] = None) -> List[ServiceRequestRecord]:
        self.require_admin(actor_user_id)
        return self.store.list_requests(status=status)

    def _pick_dispatcher(self, record: ServiceRequestRecord) -> Dispatcher:
        directory = self.store.list_dispatchers()
        dispatcher_id = self.policy.pick(record, directory)
        dispatcher = next((d for d in directory if d.id == dispatcher_id), None)
        if dispatcher is None:
            raise LifecycleConflictError(f"Assignment policy picked unknown dispatcher {dispatcher_id}")
        return dispatcher

    def _assert_can_view(self, record: ServiceRequestRecord, actor_user_id: str) -> None:
        if actor_user_id in (record.user_id, record.assigned_dispatcher_id):
            return
        if actor_user_id in self.admin_user_ids:
            return
        raise LifecycleForbiddenError("You cannot view this request")

    def _get_or_404(self, request_id: str) -> ServiceRequestRecord:
        record = self.store.get_request(request_id)
        if not record:
            raise LifecycleNotFoundError("Request not found")
        return record


def _admin_ids_from_env() -> Set[str]:
    configured = {value.strip() for value in os.getenv("ADMIN_USER_IDS", "").split(",") if value.strip()}
    return configured or set(DEFAULT_ADMIN_USERS)


request_lifecycle = RequestLifecycle(
    store=request_store,
    notifications=notification_store,
    policy=policy_from_env(),
    writer=reassurance_writer,
    hub=subscription_hub,
    admin_user_ids=_admin_ids_from_env(),
)
