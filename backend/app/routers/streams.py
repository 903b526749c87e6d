import json
import logging
from typing import Iterator, Literal, Optional

from fastapi import APIRouter, Header, Query
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from app.auth import assert_actor_authorized
from app.routers.common import raise_lifecycle_http_error
from app.services.errors import LifecycleError, LifecycleForbiddenError
from app.services.lifecycle import request_lifecycle
from app.services.notification_store import notification_store
from app.services.subscriptions import subscription_hub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/streams", tags=["streams"])

StreamView = Literal["owner", "dispatcher", "admin", "mailbox"]


def _sse(event: str, payload: object) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


def _snapshot(view: str, key: str) -> list[dict]:
    if view == "owner":
        return [item.model_dump() for item in request_lifecycle.list_for_owner(key)]
    if view == "dispatcher":
        return [item.model_dump() for item in request_lifecycle.list_for_dispatcher(key)]
    if view == "admin":
        return [item.model_dump() for item in request_lifecycle.list_all(key)]
    return [item.model_dump() for item in notification_store.list_for_user(key)]


def _authorize_view(view: str, actor_user_id: str) -> None:
    role = request_lifecycle.resolve_actor(actor_user_id).role
    if view == "admin" and role != "admin":
        raise LifecycleForbiddenError("Only administrators can watch every request")
    if view == "dispatcher" and role != "dispatcher":
        raise LifecycleForbiddenError("Only dispatchers can watch a dispatcher queue")


@router.get("/{view}")
def stream_view(
    view: StreamView,
    actor_user_id: str = Query(...),
    limit: Optional[int] = Query(default=None, ge=1),
    idle_timeout: float = Query(default=25.0, gt=0, le=300),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        _authorize_view(view, actor_user_id)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)

    # Subscribe before reading the snapshot so no write falls between the two.
    subscription = subscription_hub.subscribe(view, actor_user_id)
    try:
        snapshot = _snapshot(view, actor_user_id)
    except LifecycleError as exc:
        subscription.close()
        raise_lifecycle_http_error(exc)

    def event_generator() -> Iterator[str]:
        with subscription:
            yield _sse("snapshot", snapshot)
            sent = 0
            while limit is None or sent < limit:
                event = subscription.get(timeout=idle_timeout)
                if event is None:
                    logger.debug("stream %s idle for %.1fs; closing", subscription.topic, idle_timeout)
                    yield _sse("idle", {"dropped": subscription.dropped})
                    return
                yield _sse("change", event.model_dump())
                sent += 1

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
        background=BackgroundTask(subscription.close),
    )
