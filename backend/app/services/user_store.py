import logging
import os
import re
import secrets
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Iterator, Optional
from uuid import uuid4

from passlib.context import CryptContext

from app.models import ProfileUpdateRequest, SignupRequest, UserProfile
from app.services.errors import (
    LifecycleConflictError,
    LifecycleForbiddenError,
    LifecycleNotFoundError,
    LifecycleValidationError,
    PersistenceFailureError,
)
from app.services.request_store import default_db, utc_now_iso

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
MIN_PASSWORD_LENGTH = 8


def validate_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise LifecycleValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[A-Za-z]", password) or not re.search(r"\d", password):
        raise LifecycleValidationError("Password must contain letters and numbers")


class UserStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
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
            except sqlite3.IntegrityError as exc:
                raise LifecycleConflictError("An account with this email already exists") from exc
            except sqlite3.Error as exc:
                raise PersistenceFailureError() from exc
            finally:
                conn.close()

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    name TEXT NOT NULL,
                    phone TEXT NOT NULL DEFAULT '',
                    country TEXT NOT NULL DEFAULT '',
                    address TEXT NOT NULL DEFAULT '',
                    date_of_birth TEXT,
                    photo_url TEXT NOT NULL DEFAULT '',
                    plan TEXT NOT NULL DEFAULT 'Basic',
                    email_verified INTEGER NOT NULL DEFAULT 0,
                    verification_token TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )

    def create_user(self, request: SignupRequest) -> tuple[UserProfile, str]:
        email = request.email.strip().lower()
        if not request.name.strip():
            raise LifecycleValidationError("Name is required")
        validate_password(request.password)

        verification_token = secrets.token_urlsafe(24)
        password_hash = pwd_context.hash(request.password)
        profile = UserProfile(
            id=f"usr_{uuid4().hex[:12]}",
            email=email,
            name=request.name.strip(),
            phone=request.phone.strip(),
            country=request.country.strip(),
            address=request.address.strip(),
            date_of_birth=request.date_of_birth,
            plan=request.plan,
            email_verified=False,
            created_at=utc_now_iso(),
        )
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO users (
                    id, email, password_hash, name, phone, country, address,
                    date_of_birth, plan, email_verified, verification_token, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    profile.id,
                    profile.email,
                    password_hash,
                    profile.name,
                    profile.phone,
                    profile.country,
                    profile.address,
                    profile.date_of_birth,
                    profile.plan,
                    verification_token,
                    profile.created_at,
                ),
            )
        return profile, verification_token

    def verify_email(self, token: str) -> UserProfile:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM users WHERE verification_token = ?", (token,)).fetchone()
            if not row:
                raise LifecycleNotFoundError("Verification link is invalid or already used")
            conn.execute(
                "UPDATE users SET email_verified = 1, verification_token = NULL WHERE id = ?",
                (row["id"],),
            )
            row = conn.execute("SELECT * FROM users WHERE id = ?", (row["id"],)).fetchone()
        return self._row_to_profile(row)

    def authenticate(self, email: str, password: str) -> UserProfile:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email.strip().lower(),)).fetchone()
        if not row:
            raise LifecycleForbiddenError("Invalid credentials")
        try:
            password_ok = pwd_context.verify(password, row["password_hash"])
        except ValueError:
            logger.warning("Unreadable password hash for user %s", row["id"])
            password_ok = False
        if not password_ok:
            raise LifecycleForbiddenError("Invalid credentials")
        if not row["email_verified"]:
            raise LifecycleForbiddenError("Please verify your email before signing in")
        return self._row_to_profile(row)

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_profile(row) if row else None

    def update_profile(self, update: ProfileUpdateRequest) -> UserProfile:
        current = self.get_profile(update.user_id)
        if not current:
            raise LifecycleNotFoundError("User not found")
        changes = {
            key: value
            for key, value in update.model_dump(exclude_unset=True, exclude={"user_id"}).items()
            if value is not None
        }
        if "name" in changes and not str(changes["name"]).strip():
            raise LifecycleValidationError("Name is required")
        merged = current.model_copy(update=changes)
        with self._session() as conn:
            conn.execute(
                """
                UPDATE users SET name = ?, phone = ?, country = ?, address = ?,
                    date_of_birth = ?, photo_url = ?, plan = ?
                WHERE id = ?
                """,
                (
                    merged.name.strip(),
                    merged.phone,
                    merged.country,
                    merged.address,
                    merged.date_of_birth,
                    merged.photo_url,
                    merged.plan,
                    merged.id,
                ),
            )
        return merged

    def _row_to_profile(self, row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            phone=row["phone"],
            country=row["country"],
            address=row["address"],
            date_of_birth=row["date_of_birth"],
            photo_url=row["photo_url"],
            plan=row["plan"],
            email_verified=bool(row["email_verified"]),
            created_at=row["created_at"],
        )


user_store = UserStore(db_path=os.getenv("WASIL_DB_PATH", default_db))
