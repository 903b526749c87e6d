import logging
import os
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)

_init_lock = Lock()


def ensure_firebase_app(credentials_path: Optional[str] = None) -> bool:
    """Initialise the default Firebase app once. False when credentials are missing or unusable."""
    credentials_path = (credentials_path or os.getenv("FIREBASE_CREDENTIALS_PATH", "")).strip()
    if not credentials_path:
        return False
    with _init_lock:
        try:
            import firebase_admin
            from firebase_admin import credentials

            if not firebase_admin._apps:  # pylint: disable=protected-access
                options = {}
                bucket_name = os.getenv("FIREBASE_STORAGE_BUCKET", "").strip()
                if bucket_name:
                    options["storageBucket"] = bucket_name
                firebase_admin.initialize_app(credentials.Certificate(credentials_path), options or None)
        except Exception:
            logger.exception("Firebase init failed")
            return False
    return True
