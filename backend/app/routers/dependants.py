from typing import Optional

from fastapi import APIRouter, Header, Query

from app.auth import assert_actor_authorized
from app.models import Dependant, DependantCreateRequest, DependantUpdateRequest
from app.routers.common import raise_lifecycle_http_error
from app.services.errors import LifecycleError
from app.services.request_store import request_store

router = APIRouter(prefix="/dependants", tags=["dependants"])


@router.get("", response_model=list[Dependant])
def list_dependants(
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return request_store.list_dependants(user_id)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.post("", response_model=Dependant)
def create_dependant(
    payload: DependantCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.user_id, authorization=authorization)
    try:
        return request_store.create_dependant(payload)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.post("/{dependant_id}/update", response_model=Dependant)
def update_dependant(
    dependant_id: str,
    payload: DependantUpdateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.user_id, authorization=authorization)
    try:
        return request_store.update_dependant(dependant_id, payload)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.delete("/{dependant_id}", response_model=dict)
def delete_dependant(
    dependant_id: str,
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        request_store.delete_dependant(user_id, dependant_id)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
    return {"status": "deleted"}
