from typing import Optional

from fastapi import APIRouter, Header, Query

from app.auth import assert_actor_authorized
from app.models import Dispatcher, DispatcherEnlistRequest, RequestStatus, ServiceRequestRecord
from app.routers.common import raise_lifecycle_http_error
from app.services.errors import LifecycleError
from app.services.lifecycle import request_lifecycle
from app.services.request_store import request_store

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/requests", response_model=list[ServiceRequestRecord])
def list_all_requests(
    actor_user_id: str = Query(...),
    status: Optional[RequestStatus] = Query(default=None),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        return request_lifecycle.list_all(actor_user_id, status=status)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.post("/dispatchers", response_model=Dispatcher)
def enlist_dispatcher(
    payload: DispatcherEnlistRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        request_lifecycle.require_admin(payload.actor_user_id)
        return request_store.upsert_dispatcher(Dispatcher(**payload.model_dump(exclude={"actor_user_id"})))
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.delete("/dispatchers/{dispatcher_id}", response_model=dict)
def remove_dispatcher(
    dispatcher_id: str,
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        request_lifecycle.require_admin(actor_user_id)
        request_store.remove_dispatcher(dispatcher_id)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
    return {"status": "removed"}
