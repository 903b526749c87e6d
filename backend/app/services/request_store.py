import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from uuid import uuid4

from app.data import LOCATIONS, SEED_DISPATCHERS, SERVICE_TYPES
from app.models import (
    Dependant,
    DependantCreateRequest,
    DependantUpdateRequest,
    Dispatcher,
    RequestStatusChange,
    ServiceRequestRecord,
    ServiceType,
)
from app.services.errors import (
    InvalidTransitionError,
    LifecycleNotFoundError,
    LifecycleValidationError,
    PersistenceFailureError,
)

logger = logging.getLogger(__name__)

# Columns a lifecycle transition is allowed to touch after creation.
MUTABLE_REQUEST_COLUMNS = {
    "status",
    "assigned_dispatcher_id",
    "cancellation_reason",
    "ai_reassurance",
    "expat_price",
}

# (from_status, to_status, note)
HistoryEntry = Tuple[str, str, str]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RequestStore:
    db_path: str

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()
        self._seed_if_needed()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
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
                logger.exception("Request store operation failed")
                raise PersistenceFailureError() from exc
            finally:
                conn.close()

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS service_types (
                    id TEXT PRIMARY KEY,
                    category TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    icon TEXT NOT NULL DEFAULT '',
                    base_price REAL NOT NULL,
                    priority TEXT NOT NULL DEFAULT 'Normal'
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS dispatchers (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    role TEXT NOT NULL,
                    rating REAL NOT NULL,
                    certifications_json TEXT NOT NULL,
                    photo_url TEXT NOT NULL,
                    working_video_url TEXT,
                    field_photo_url TEXT,
                    supported_service_ids_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS dependants (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    date_of_birth TEXT NOT NULL,
                    location TEXT NOT NULL,
                    full_address TEXT NOT NULL,
                    medical_conditions TEXT NOT NULL,
                    medications_json TEXT NOT NULL,
                    photo_url TEXT,
                    gender TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS requests (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    dependant_id TEXT NOT NULL,
                    parent_name TEXT NOT NULL,
                    location TEXT NOT NULL,
                    service_id TEXT NOT NULL,
                    service_title TEXT NOT NULL,
                    category TEXT NOT NULL,
                    urgent_notes TEXT NOT NULL,
                    is_custom INTEGER NOT NULL DEFAULT 0,
                    expat_price REAL NOT NULL,
                    runner_payout REAL NOT NULL,
                    status TEXT NOT NULL,
                    assigned_dispatcher_id TEXT,
                    cancellation_reason TEXT,
                    ai_reassurance TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS request_status_history (
                    id TEXT PRIMARY KEY,
                    request_id TEXT NOT NULL,
                    actor_user_id TEXT NOT NULL,
                    from_status TEXT NOT NULL,
                    to_status TEXT NOT NULL,
                    note TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_requests_user ON requests (user_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_requests_dispatcher ON requests (assigned_dispatcher_id)")
            self._ensure_column(conn, "requests", "ai_reassurance", "TEXT")
            self._ensure_column(conn, "dispatchers", "field_photo_url", "TEXT")

    def _ensure_column(self, conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
        columns = conn.execute(f"PRAGMA table_info({table})").fetchall()
        existing = {row["name"] for row in columns}
        if column in existing:
            return
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    def _seed_if_needed(self) -> None:
        with self._session() as conn:
            for service in SERVICE_TYPES:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO service_types (id, category, title, description, icon, base_price, priority)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        service["id"],
                        service["category"],
                        service["title"],
                        service["description"],
                        service["icon"],
                        service["base_price"],
                        service["priority"],
                    ),
                )
            # Seed the directory only once so de-enlisted dispatchers stay removed.
            if conn.execute("SELECT COUNT(*) FROM dispatchers").fetchone()[0] == 0:
                for dispatcher in SEED_DISPATCHERS:
                    self._write_dispatcher(conn, Dispatcher(**dispatcher))

    # Catalog

    def list_service_types(self, category: Optional[str] = None) -> List[ServiceType]:
        query = "SELECT * FROM service_types"
        params: List[Any] = []
        if category:
            query += " WHERE category = ?"
            params.append(category)
        query += " ORDER BY category, title"
        with self._session() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_service_type(row) for row in rows]

    def get_service_type(self, service_id: str) -> Optional[ServiceType]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM service_types WHERE id = ?", (service_id,)).fetchone()
        return self._row_to_service_type(row) if row else None

    def _row_to_service_type(self, row: sqlite3.Row) -> ServiceType:
        return ServiceType(
            id=row["id"],
            category=row["category"],
            title=row["title"],
            description=row["description"],
            icon=row["icon"],
            base_price=row["base_price"],
            priority=row["priority"],
        )

    # Dispatcher directory

    def list_dispatchers(self) -> List[Dispatcher]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM dispatchers ORDER BY created_at, id").fetchall()
        return [self._row_to_dispatcher(row) for row in rows]

    def get_dispatcher(self, dispatcher_id: str) -> Optional[Dispatcher]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM dispatchers WHERE id = ?", (dispatcher_id,)).fetchone()
        return self._row_to_dispatcher(row) if row else None

    def upsert_dispatcher(self, dispatcher: Dispatcher) -> Dispatcher:
        if not dispatcher.id.strip():
            raise LifecycleValidationError("Dispatcher id is required")
        if not dispatcher.name.strip():
            raise LifecycleValidationError("Dispatcher name is required")
        known = {service["id"] for service in SERVICE_TYPES}
        unknown = [sid for sid in dispatcher.supported_service_ids if sid not in known]
        if unknown:
            raise LifecycleValidationError(f"Unknown service ids: {', '.join(sorted(unknown))}")
        with self._session() as conn:
            self._write_dispatcher(conn, dispatcher)
        return dispatcher

    def _write_dispatcher(self, conn: sqlite3.Connection, dispatcher: Dispatcher) -> None:
        conn.execute(
            """
            INSERT INTO dispatchers (
                id, name, role, rating, certifications_json, photo_url,
                working_video_url, field_photo_url, supported_service_ids_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                role = excluded.role,
                certifications_json = excluded.certifications_json,
                photo_url = excluded.photo_url,
                working_video_url = excluded.working_video_url,
                field_photo_url = excluded.field_photo_url,
                supported_service_ids_json = excluded.supported_service_ids_json
            """,
            (
                dispatcher.id,
                dispatcher.name,
                dispatcher.role,
                dispatcher.rating,
                json.dumps(dispatcher.certifications),
                dispatcher.photo_url,
                dispatcher.working_video_url,
                dispatcher.field_photo_url,
                json.dumps(dispatcher.supported_service_ids),
                utc_now_iso(),
            ),
        )

    def remove_dispatcher(self, dispatcher_id: str) -> None:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM dispatchers WHERE id = ?", (dispatcher_id,))
        if cursor.rowcount == 0:
            raise LifecycleNotFoundError("Dispatcher not found")

    def _row_to_dispatcher(self, row: sqlite3.Row) -> Dispatcher:
        return Dispatcher(
            id=row["id"],
            name=row["name"],
            role=row["role"],
            rating=row["rating"],
            certifications=_safe_json_list(row["certifications_json"]),
            photo_url=row["photo_url"],
            working_video_url=row["working_video_url"],
            field_photo_url=row["field_photo_url"],
            supported_service_ids=_safe_json_list(row["supported_service_ids_json"]),
        )

    # Dependants

    def create_dependant(self, request: DependantCreateRequest) -> Dependant:
        self._validate_dependant_fields(name=request.name, location=request.location)
        dependant = Dependant(
            id=f"dep_{uuid4().hex[:10]}",
            user_id=request.user_id,
            name=request.name.strip(),
            date_of_birth=request.date_of_birth,
            location=request.location,
            full_address=request.full_address,
            medical_conditions=request.medical_conditions,
            medications=[item.strip() for item in request.medications if item.strip()],
            photo_url=request.photo_url,
            gender=request.gender,
        )
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO dependants (
                    id, user_id, name, date_of_birth, location, full_address,
                    medical_conditions, medications_json, photo_url, gender, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    dependant.id,
                    dependant.user_id,
                    dependant.name,
                    dependant.date_of_birth,
                    dependant.location,
                    dependant.full_address,
                    dependant.medical_conditions,
                    json.dumps(dependant.medications),
                    dependant.photo_url,
                    dependant.gender,
                    utc_now_iso(),
                ),
            )
        return dependant

    def list_dependants(self, user_id: str) -> List[Dependant]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM dependants WHERE user_id = ? ORDER BY created_at, id",
                (user_id,),
            ).fetchall()
        return [self._row_to_dependant(row) for row in rows]

    def get_dependant(self, user_id: str, dependant_id: str) -> Optional[Dependant]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM dependants WHERE id = ? AND user_id = ?",
                (dependant_id, user_id),
            ).fetchone()
        return self._row_to_dependant(row) if row else None

    def update_dependant(self, dependant_id: str, update: DependantUpdateRequest) -> Dependant:
        current = self.get_dependant(update.user_id, dependant_id)
        if not current:
            raise LifecycleNotFoundError("Dependant not found")
        changes = update.model_dump(exclude_unset=True, exclude={"user_id"})
        merged = current.model_copy(update={key: value for key, value in changes.items() if value is not None})
        self._validate_dependant_fields(name=merged.name, location=merged.location)
        with self._session() as conn:
            conn.execute(
                """
                UPDATE dependants SET
                    name = ?, date_of_birth = ?, location = ?, full_address = ?,
                    medical_conditions = ?, medications_json = ?, photo_url = ?, gender = ?
                WHERE id = ? AND user_id = ?
                """,
                (
                    merged.name.strip(),
                    merged.date_of_birth,
                    merged.location,
                    merged.full_address,
                    merged.medical_conditions,
                    json.dumps(merged.medications),
                    merged.photo_url,
                    merged.gender,
                    dependant_id,
                    update.user_id,
                ),
            )
        return merged

    def delete_dependant(self, user_id: str, dependant_id: str) -> None:
        with self._session() as conn:
            cursor = conn.execute(
                "DELETE FROM dependants WHERE id = ? AND user_id = ?",
                (dependant_id, user_id),
            )
        if cursor.rowcount == 0:
            raise LifecycleNotFoundError("Dependant not found")

    def _validate_dependant_fields(self, *, name: str, location: str) -> None:
        if not name.strip():
            raise LifecycleValidationError("Dependant name is required")
        if location not in LOCATIONS:
            raise LifecycleValidationError(f"Invalid location. Allowed: {', '.join(LOCATIONS)}")

    def _row_to_dependant(self, row: sqlite3.Row) -> Dependant:
        return Dependant(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            date_of_birth=row["date_of_birth"],
            location=row["location"],
            full_address=row["full_address"],
            medical_conditions=row["medical_conditions"],
            medications=_safe_json_list(row["medications_json"]),
            photo_url=row["photo_url"],
            gender=row["gender"],
        )

    # Requests

    def insert_request(
        self,
        record: ServiceRequestRecord,
        *,
        actor_user_id: str,
        history: Sequence[HistoryEntry],
    ) -> ServiceRequestRecord:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO requests (
                    id, user_id, dependant_id, parent_name, location, service_id, service_title,
                    category, urgent_notes, is_custom, expat_price, runner_payout, status,
                    assigned_dispatcher_id, cancellation_reason, ai_reassurance, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.user_id,
                    record.dependant_id,
                    record.parent_name,
                    record.location,
                    record.service_id,
                    record.service_title,
                    record.category,
                    record.urgent_notes,
                    1 if record.is_custom else 0,
                    record.expat_price,
                    record.runner_payout,
                    record.status,
                    record.assigned_dispatcher_id,
                    record.cancellation_reason,
                    record.ai_reassurance,
                    record.created_at,
                    record.updated_at,
                ),
            )
            for from_status, to_status, note in history:
                self._append_history(conn, record.id, actor_user_id, from_status, to_status, note)
        return record

    def get_request(self, request_id: str) -> Optional[ServiceRequestRecord]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM requests WHERE id = ?", (request_id,)).fetchone()
        return self._row_to_request(row) if row else None

    def list_requests(
        self,
        *,
        user_id: Optional[str] = None,
        dispatcher_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[ServiceRequestRecord]:
        query = "SELECT * FROM requests"
        clauses: List[str] = []
        params: List[Any] = []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if dispatcher_id:
            clauses.append("assigned_dispatcher_id = ?")
            params.append(dispatcher_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id DESC"
        with self._session() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_request(row) for row in rows]

    def update_request(
        self,
        request_id: str,
        *,
        expected_status: str,
        changes: Dict[str, Any],
        actor_user_id: str,
        note: str = "",
    ) -> ServiceRequestRecord:
        """Apply ``changes`` only if the stored status still equals ``expected_status``.

        A lost race surfaces as ``InvalidTransitionError`` and nothing is written.
        """
        illegal = set(changes) - MUTABLE_REQUEST_COLUMNS
        if illegal:
            raise LifecycleValidationError(f"Immutable request fields: {', '.join(sorted(illegal))}")

        assignments = ", ".join(f"{column} = ?" for column in changes)
        params: List[Any] = list(changes.values())
        params.extend([utc_now_iso(), request_id, expected_status])
        with self._session() as conn:
            cursor = conn.execute(
                f"UPDATE requests SET {assignments}, updated_at = ? WHERE id = ? AND status = ?",
                tuple(params),
            )
            if cursor.rowcount == 0:
                exists = conn.execute("SELECT 1 FROM requests WHERE id = ?", (request_id,)).fetchone()
                if not exists:
                    raise LifecycleNotFoundError("Request not found")
                raise InvalidTransitionError("Request was updated by someone else; reload and retry")
            new_status = changes.get("status", expected_status)
            self._append_history(conn, request_id, actor_user_id, expected_status, new_status, note)
            row = conn.execute("SELECT * FROM requests WHERE id = ?", (request_id,)).fetchone()
        return self._row_to_request(row)

    def list_status_history(self, request_id: str) -> List[RequestStatusChange]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM request_status_history WHERE request_id = ? ORDER BY created_at, rowid",
                (request_id,),
            ).fetchall()
        return [
            RequestStatusChange(
                id=row["id"],
                request_id=row["request_id"],
                actor_user_id=row["actor_user_id"],
                from_status=row["from_status"],
                to_status=row["to_status"],
                note=row["note"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def _append_history(
        self,
        conn: sqlite3.Connection,
        request_id: str,
        actor_user_id: str,
        from_status: str,
        to_status: str,
        note: str,
    ) -> None:
        conn.execute(
            """
            INSERT INTO request_status_history (id, request_id, actor_user_id, from_status, to_status, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (f"rsh_{uuid4().hex[:10]}", request_id, actor_user_id, from_status, to_status, note, utc_now_iso()),
        )

    def _row_to_request(self, row: sqlite3.Row) -> ServiceRequestRecord:
        return ServiceRequestRecord(
            id=row["id"],
            user_id=row["user_id"],
            dependant_id=row["dependant_id"],
            parent_name=row["parent_name"],
            location=row["location"],
            service_id=row["service_id"],
            service_title=row["service_title"],
            category=row["category"],
            urgent_notes=row["urgent_notes"],
            is_custom=bool(row["is_custom"]),
            expat_price=row["expat_price"],
            runner_payout=row["runner_payout"],
            status=row["status"],
            assigned_dispatcher_id=row["assigned_dispatcher_id"],
            cancellation_reason=row["cancellation_reason"],
            ai_reassurance=row["ai_reassurance"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _safe_json_list(raw_value: Any) -> List[str]:
    if not raw_value:
        return []
    try:
        parsed = json.loads(raw_value)
    except (TypeError, json.JSONDecodeError):
        return []
    return [str(item) for item in parsed] if isinstance(parsed, list) else []


default_db = str(Path(__file__).resolve().parents[2] / "data" / "wasil.sqlite3")
request_store = RequestStore(db_path=os.getenv("WASIL_DB_PATH", default_db))
