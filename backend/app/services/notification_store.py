import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Iterator, List, Optional
from uuid import uuid4

from app.models import NotificationRecord
from app.services.errors import LifecycleNotFoundError, PersistenceFailureError
from app.services.push_sender import PushSender, push_sender
from app.services.request_store import default_db, utc_now_iso
from app.services.subscriptions import SubscriptionHub, subscription_hub

logger = logging.getLogger(__name__)


class NotificationStore:
    """Per-user append-only mailbox. Entries are never deleted; only ``read`` flips."""

    def __init__(
        self,
        db_path: str,
        hub: Optional[SubscriptionHub] = None,
        sender: Optional[PushSender] = None,
    ):
        self._lock = Lock()
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._hub = hub or subscription_hub
        self._sender = sender or push_sender
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._connect()
            try:
                with conn:
                    yield conn
            except sqlite3.Error as exc:
                logger.exception("Notification store operation failed")
                raise PersistenceFailureError() from exc
            finally:
                conn.close()

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    category TEXT NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    request_id TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS device_tokens (
                    user_id TEXT NOT NULL,
                    device_token TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    PRIMARY KEY (user_id, device_token)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id)")

    def register_device_token(self, user_id: str, device_token: str, platform: str = "web") -> None:
        if not device_token.strip():
            return
        with self._session() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO device_tokens (user_id, device_token, platform) VALUES (?, ?, ?)",
                (user_id, device_token.strip(), platform),
            )

    def create(
        self,
        user_id: str,
        title: str,
        message: str,
        category: str = "system",
        request_id: Optional[str] = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=f"ntf_{uuid4().hex[:10]}",
            user_id=user_id,
            title=title,
            message=message,
            category=category,  # type: ignore[arg-type]
            read=False,
            created_at=utc_now_iso(),
            request_id=request_id,
        )
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO notifications (id, user_id, title, message, category, read, request_id, created_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (record.id, user_id, title, message, category, request_id, record.created_at),
            )
            tokens = [
                row["device_token"]
                for row in conn.execute("SELECT device_token FROM device_tokens WHERE user_id = ?", (user_id,))
            ]
        self._hub.publish_notification(record)
        dead_tokens = self._sender.send(
            tokens=tokens,
            title=title,
            body=message,
            data={"notification_id": record.id, "category": category, "request_id": request_id or ""},
        )
        if dead_tokens:
            with self._session() as conn:
                conn.executemany(
                    "DELETE FROM device_tokens WHERE user_id = ? AND device_token = ?",
                    [(user_id, token) for token in dead_tokens],
                )
        return record

    def list_for_user(
        self, user_id: str, unread_only: bool = False, limit: Optional[int] = None
    ) -> List[NotificationRecord]:
        """Every entry for ``user_id``, newest first; ``limit`` only when the caller asks for a page."""
        query = "SELECT * FROM notifications WHERE user_id = ?"
        params: List[object] = [user_id]
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._session() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def mark_read(self, user_id: str, notification_id: str) -> NotificationRecord:
        with self._session() as conn:
            conn.execute(
                "UPDATE notifications SET read = 1 WHERE id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            row = conn.execute(
                "SELECT * FROM notifications WHERE id = ? AND user_id = ?",
                (notification_id, user_id),
            ).fetchone()
        if not row:
            raise LifecycleNotFoundError("Notification not found")
        return self._row_to_notification(row)

    def _row_to_notification(self, row: sqlite3.Row) -> NotificationRecord:
        return NotificationRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            message=row["message"],
            category=row["category"],
            read=bool(row["read"]),
            created_at=row["created_at"],
            request_id=row["request_id"],
        )


notification_store = NotificationStore(db_path=os.getenv("WASIL_DB_PATH", default_db))
