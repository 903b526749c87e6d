import logging
import os
import re
from pathlib import Path
from threading import Lock
from typing import Protocol
from uuid import uuid4

from app.env import read_positive_int_env
from app.models import MediaObject
from app.services.errors import LifecycleValidationError, PersistenceFailureError
from app.services.firebase_app import ensure_firebase_app

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_PREFIXES = ("image/", "video/")
DEFAULT_MAX_BYTES = 20 * 1024 * 1024
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class MediaBackend(Protocol):
    name: str

    def put_object(self, key: str, content_type: str, data: bytes) -> str:
        """Store ``data`` under ``key`` and return a URL clients can fetch it from."""
        ...


class FirebaseStorageBackend:
    """Firebase Storage (Google Cloud Storage bucket) through ``firebase_admin.storage``."""

    name = "firebase"

    def __init__(self, bucket_name: str, prefix: str = "media", bucket=None) -> None:
        self.bucket_name = bucket_name
        self.prefix = prefix.strip("/")
        self._bucket = bucket
        self._lock = Lock()

    def _get_bucket(self):
        with self._lock:
            if self._bucket is None:
                if not ensure_firebase_app():
                    raise PersistenceFailureError()
                from firebase_admin import storage

                self._bucket = storage.bucket(self.bucket_name)
            return self._bucket

    def put_object(self, key: str, content_type: str, data: bytes) -> str:
        from google.api_core.exceptions import GoogleAPIError

        blob = self._get_bucket().blob(f"{self.prefix}/{key}")
        try:
            blob.upload_from_string(data, content_type=content_type)
            blob.make_public()
        except GoogleAPIError as exc:
            logger.exception("Media upload to bucket %s failed", self.bucket_name)
            raise PersistenceFailureError() from exc
        return blob.public_url


class LocalMediaBackend:
    """Files under ``root`` served by the app's static mount. For development and tests."""

    name = "local"

    def __init__(self, root: str, public_prefix: str = "/media/files") -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_prefix = public_prefix.rstrip("/")

    def put_object(self, key: str, content_type: str, data: bytes) -> str:
        target = (self.root / key).resolve()
        if self.root not in target.parents:
            raise LifecycleValidationError("Invalid media path")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            logger.exception("Media write failed for %s", key)
            raise PersistenceFailureError() from exc
        return f"{self.public_prefix}/{target.relative_to(self.root).as_posix()}"


class MediaStore:
    """Validated uploads for profile photos and dispatcher media."""

    def __init__(self, backend: MediaBackend, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.backend = backend
        self.max_bytes = max_bytes

    def put(self, owner_id: str, filename: str, content_type: str, data: bytes) -> MediaObject:
        if not content_type.startswith(ALLOWED_CONTENT_PREFIXES):
            raise LifecycleValidationError("Only image and video uploads are supported")
        if not data:
            raise LifecycleValidationError("Uploaded file is empty")
        if len(data) > self.max_bytes:
            raise LifecycleValidationError(f"File exceeds {self.max_bytes} bytes")

        # Dot-only segments would climb out of the owner's folder.
        safe_owner = _UNSAFE_CHARS.sub("_", owner_id).strip(".")
        if not safe_owner:
            raise LifecycleValidationError("A valid owner id is required")
        safe_name = _UNSAFE_CHARS.sub("_", Path(filename or "upload").name).strip(".") or "upload"
        object_id = f"med_{uuid4().hex[:12]}"
        url = self.backend.put_object(f"{safe_owner}/{object_id}_{safe_name}", content_type, data)
        logger.info("stored %s for %s via %s", object_id, owner_id, self.backend.name)
        return MediaObject(
            id=object_id,
            owner_id=owner_id,
            filename=safe_name,
            content_type=content_type,
            size_bytes=len(data),
            url=url,
        )


def media_backend_from_env() -> MediaBackend:
    bucket_name = os.getenv("FIREBASE_STORAGE_BUCKET", "").strip()
    name = os.getenv("MEDIA_BACKEND", "firebase" if bucket_name else "local").strip().lower()
    if name == "firebase":
        if not bucket_name:
            logger.warning("MEDIA_BACKEND=firebase without FIREBASE_STORAGE_BUCKET; using local media")
        else:
            return FirebaseStorageBackend(bucket_name)
    elif name != "local":
        logger.warning("Unknown MEDIA_BACKEND=%r; using local media", name)
    default_root = str(Path(__file__).resolve().parents[2] / "data" / "media")
    return LocalMediaBackend(root=os.getenv("MEDIA_ROOT", default_root))


media_store = MediaStore(
    backend=media_backend_from_env(),
    max_bytes=read_positive_int_env("MEDIA_MAX_BYTES", DEFAULT_MAX_BYTES),
)
