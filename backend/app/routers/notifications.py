from typing import Optional

from fastapi import APIRouter, Header, Query

from app.auth import assert_actor_authorized
from app.models import DeviceTokenRegisterRequest, NotificationRecord
from app.routers.common import raise_lifecycle_http_error
from app.services.errors import LifecycleError
from app.services.notification_store import notification_store

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRecord])
def list_notifications(
    user_id: str = Query(...),
    unread_only: bool = Query(default=False),
    limit: Optional[int] = Query(default=None, ge=1),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return notification_store.list_for_user(user_id=user_id, unread_only=unread_only, limit=limit)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.post("/register-device", response_model=dict)
def register_device(
    payload: DeviceTokenRegisterRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.user_id, authorization=authorization)
    try:
        notification_store.register_device_token(
            user_id=payload.user_id,
            device_token=payload.device_token,
            platform=payload.platform,
        )
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
    return {"status": "ok"}


@router.post("/{notification_id}/read", response_model=NotificationRecord)
def mark_notification_read(
    notification_id: str,
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return notification_store.mark_read(user_id=user_id, notification_id=notification_id)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
