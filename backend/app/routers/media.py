from typing import Optional

from fastapi import APIRouter, File, Form, Header, UploadFile

from app.auth import assert_actor_authorized
from app.models import MediaObject
from app.routers.common import raise_lifecycle_http_error
from app.services.errors import LifecycleError
from app.services.media_store import media_store

router = APIRouter(prefix="/media", tags=["media"])


@router.post("/upload", response_model=MediaObject)
async def upload_media(
    owner_id: str = Form(...),
    file: UploadFile = File(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=owner_id, authorization=authorization)
    data = await file.read()
    try:
        return media_store.put(
            owner_id=owner_id,
            filename=file.filename or "upload",
            content_type=file.content_type or "application/octet-stream",
            data=data,
        )
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
