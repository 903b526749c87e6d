import logging
import os
from threading import Lock
from typing import List, Optional

from app.services.firebase_app import ensure_firebase_app

logger = logging.getLogger(__name__)

INVALID_TOKEN_MARKERS = ("registration token", "invalid argument", "not registered")


class PushSender:
    """Best-effort Firebase Cloud Messaging delivery for mailbox entries."""

    def __init__(self, credentials_path: Optional[str] = None):
        self._lock = Lock()
        self._credentials_path = credentials_path
        self._initialized = False
        self._messaging = None

    @property
    def enabled(self) -> bool:
        self._ensure_initialized()
        return self._messaging is not None

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            self._initialized = True
            credentials_path = (self._credentials_path or os.getenv("FIREBASE_CREDENTIALS_PATH", "")).strip()
            if not credentials_path:
                logger.info("Push delivery disabled: FIREBASE_CREDENTIALS_PATH not set")
                return
            if not ensure_firebase_app(credentials_path):
                logger.warning("Push delivery disabled: Firebase init failed")
                return
            from firebase_admin import messaging

            self._messaging = messaging
            logger.info("Push delivery initialized")

    def send(self, tokens: List[str], title: str, body: str, data: dict[str, str]) -> List[str]:
        """Send to every token; return the tokens Firebase reports as dead."""
        if not tokens or not self.enabled:
            return []
        messaging = self._messaging
        try:
            batch = messaging.send_each_for_multicast(
                messaging.MulticastMessage(
                    notification=messaging.Notification(title=title, body=body),
                    tokens=tokens,
                    data=data,
                )
            )
        except Exception:
            logger.exception("Push send failed for %d token(s)", len(tokens))
            return []
        dead: List[str] = []
        for token, response in zip(tokens, batch.responses):
            if response.success:
                continue
            error_text = str(response.exception).lower() if response.exception else ""
            if any(marker in error_text for marker in INVALID_TOKEN_MARKERS):
                dead.append(token)
        return dead


push_sender = PushSender()
