from typing import Optional

from fastapi import APIRouter, Header, Query

from app.auth import assert_actor_authorized
from app.models import (
    CancelRequestBody,
    RequestStatusChange,
    ServiceRequestCreate,
    ServiceRequestRecord,
    StatusAdvanceRequest,
)
from app.routers.common import raise_lifecycle_http_error
from app.services.errors import LifecycleError
from app.services.lifecycle import request_lifecycle

router = APIRouter(prefix="/requests", tags=["requests"])


@router.post("", response_model=ServiceRequestRecord)
def create_request(
    payload: ServiceRequestCreate,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.user_id, authorization=authorization)
    try:
        return request_lifecycle.create_request(
            customer_id=payload.user_id,
            dependant_id=payload.dependant_id,
            service_id=payload.service_id,
            notes=payload.notes,
            price=payload.price,
            custom_description=payload.custom_description,
        )
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.get("", response_model=list[ServiceRequestRecord])
def list_customer_requests(
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return request_lifecycle.list_for_owner(user_id)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.get("/{request_id}", response_model=ServiceRequestRecord)
def get_request(
    request_id: str,
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        return request_lifecycle.get_request(request_id, actor_user_id)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.get("/{request_id}/history", response_model=list[RequestStatusChange])
def request_history(
    request_id: str,
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        return request_lifecycle.list_history(request_id, actor_user_id)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.post("/{request_id}/status", response_model=ServiceRequestRecord)
def advance_request_status(
    request_id: str,
    payload: StatusAdvanceRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return request_lifecycle.advance_status(
            request_id=request_id,
            new_status=payload.status,
            actor_user_id=payload.actor_user_id,
            note=payload.note,
        )
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.post("/{request_id}/cancel", response_model=ServiceRequestRecord)
def cancel_request(
    request_id: str,
    payload: CancelRequestBody,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return request_lifecycle.cancel_request(
            request_id=request_id,
            reason=payload.reason,
            actor_user_id=payload.actor_user_id,
        )
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
