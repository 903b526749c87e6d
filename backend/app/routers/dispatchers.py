from fastapi import APIRouter, HTTPException

from app.models import Dispatcher, ServiceRequestRecord
from app.routers.common import raise_lifecycle_http_error
from app.services.errors import LifecycleError
from app.services.lifecycle import request_lifecycle
from app.services.request_store import request_store

router = APIRouter(prefix="/dispatchers", tags=["dispatchers"])


@router.get("", response_model=list[Dispatcher])
def list_dispatchers():
    return request_store.list_dispatchers()


@router.get("/{dispatcher_id}", response_model=Dispatcher)
def dispatcher_details(dispatcher_id: str):
    dispatcher = request_store.get_dispatcher(dispatcher_id)
    if not dispatcher:
        raise HTTPException(status_code=404, detail="Dispatcher not found")
    return dispatcher


@router.get("/{dispatcher_id}/queue", response_model=list[ServiceRequestRecord])
def dispatcher_queue(dispatcher_id: str):
    try:
        return request_lifecycle.list_for_dispatcher(dispatcher_id)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
