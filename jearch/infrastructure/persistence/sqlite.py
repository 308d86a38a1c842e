import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ...domain.clock import Clock, ensure_utc, utc_now
from ...domain.models import (
    EditableRecord,
    EmailStatus,
    EmailTemplate,
    LoginAttemptRecord,
    QueuedEmail,
    RecordKind,
    User,
)
from ...domain.ports.persistence import PersistenceGateway

_USER_TOKEN_COLUMNS = ("verification_token", "reset_token", "unlock_token")
_USER_MUTABLE_COLUMNS = (
    "password_hash",
    "email_confirmed_at",
    "verification_token",
    "verification_expires_at",
    "reset_token",
    "reset_expires_at",
    "unlock_token",
    "lockout_cleared_at",
)


class SQLitePersistence(PersistenceGateway):
    """SQLite-backed implementation of the persistence gateway."""

    def __init__(self, path: Path, *, clock: Clock = utc_now) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False, timeout=10.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._clock = clock
        self._initialize()

    def _initialize(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    email_confirmed_at TEXT,
                    verification_token TEXT,
                    verification_expires_at TEXT,
                    reset_token TEXT,
                    reset_expires_at TEXT,
                    unlock_token TEXT,
                    lockout_cleared_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS professional_experiences (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    company TEXT NOT NULL,
                    role TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date TEXT,
                    is_current INTEGER NOT NULL DEFAULT 0,
                    situation TEXT,
                    task TEXT,
                    action TEXT,
                    result TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS extra_professional_experiences (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    activity_name TEXT NOT NULL,
                    organization TEXT,
                    start_date TEXT NOT NULL,
                    end_date TEXT,
                    is_ongoing INTEGER NOT NULL DEFAULT 0,
                    situation TEXT,
                    task TEXT,
                    action TEXT,
                    result TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS educations (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    institution TEXT NOT NULL,
                    degree_type TEXT NOT NULL,
                    field_of_study TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date TEXT,
                    is_in_progress INTEGER NOT NULL DEFAULT 0,
                    gpa TEXT,
                    honors TEXT,
                    relevant_coursework TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS email_queue (
                    id TEXT PRIMARY KEY,
                    to_address TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    body_text TEXT NOT NULL,
                    body_html TEXT,
                    template TEXT NOT NULL,
                    user_id TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL,
                    next_retry_at TEXT,
                    status TEXT NOT NULL,
                    error_message TEXT,
                    sent_at TEXT,
                    claimed_until TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (attempts >= 0 AND attempts <= max_attempts)
                );

                CREATE INDEX IF NOT EXISTS idx_email_queue_status_retry
                    ON email_queue(status, next_retry_at);

                CREATE TABLE IF NOT EXISTS login_attempts (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    ip_address TEXT,
                    success INTEGER NOT NULL,
                    attempt_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_login_attempts_email_time
                    ON login_attempts(email, attempt_at DESC);
                """
            )
            for kind in RecordKind:
                self._conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{kind.table}_user ON {kind.table}(user_id)"
                )

    def close(self) -> None:
        self._conn.close()

    # UserRepository API ----------------------------------------------------
    def create_user(
        self,
        email: str,
        password_hash: str,
        verification_token: Optional[str],
        verification_expires_at: Optional[datetime],
    ) -> User:
        user_id = self._new_id()
        now = self._now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO users (
                    id, email, password_hash, verification_token,
                    verification_expires_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    email.lower(),
                    password_hash,
                    verification_token,
                    self._format(verification_expires_at),
                    now,
                    now,
                ),
            )
            row = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            raise RuntimeError("Failed to persist user.")
        return self._row_to_user(row)

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM users WHERE email = ?", (email.lower(),)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_token(self, column: str, token: str) -> Optional[User]:
        if column not in _USER_TOKEN_COLUMNS:
            raise ValueError(f"Unknown token column: {column}")
        with self._lock:
            row = self._conn.execute(
                f"SELECT * FROM users WHERE {column} = ?", (token,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def update_user(self, user_id: str, **changes: Any) -> User:
        unknown = set(changes) - set(_USER_MUTABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update user columns: {', '.join(sorted(unknown))}")
        assignments = [f"{column} = ?" for column in changes]
        params: List[Any] = [self._to_db(value) for value in changes.values()]
        assignments.append("updated_at = ?")
        params.extend([self._now(), user_id])
        with self._lock, self._conn:
            self._conn.execute(
                f"UPDATE users SET {', '.join(assignments)} WHERE id = ?", params
            )
            row = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            raise ValueError(f"User {user_id} not found.")
        return self._row_to_user(row)

    # RecordRepository API --------------------------------------------------
    def create_record(self, kind: RecordKind, user_id: str, values: Dict[str, Any]) -> EditableRecord:
        columns = kind.content_fields
        record_id = self._new_id()
        now = self._now()
        placeholders = ", ".join("?" for _ in range(len(columns) + 4))
        params = [record_id, user_id]
        params.extend(self._to_db(values.get(column)) for column in columns)
        params.extend([now, now])
        with self._lock, self._conn:
            self._conn.execute(
                f"""
                INSERT INTO {kind.table} (id, user_id, {', '.join(columns)}, created_at, updated_at)
                VALUES ({placeholders})
                """,
                params,
            )
            row = self._conn.execute(
                f"SELECT * FROM {kind.table} WHERE id = ?", (record_id,)
            ).fetchone()
        if not row:
            raise RuntimeError(f"Failed to persist {kind.value} record.")
        return self._row_to_record(kind, row)

    def get_record(self, kind: RecordKind, user_id: str, record_id: str) -> Optional[EditableRecord]:
        with self._lock:
            row = self._select_record(kind, user_id, record_id)
        return self._row_to_record(kind, row) if row else None

    def list_records(self, kind: RecordKind, user_id: str) -> List[EditableRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM {kind.table} WHERE user_id = ? ORDER BY start_date DESC, created_at DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_record(kind, row) for row in rows]

    def delete_record(self, kind: RecordKind, user_id: str, record_id: str) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute(
                f"DELETE FROM {kind.table} WHERE id = ? AND user_id = ?", (record_id, user_id)
            )
            return cur.rowcount > 0

    @contextmanager
    def lock_record(self, kind: RecordKind, user_id: str, record_id: str) -> Iterator["_LockedRecord"]:
        # BEGIN IMMEDIATE takes the database write lock before the read, so no other
        # connection can commit between the version comparison and the update.
        with self._lock, self._conn:
            self._conn.execute("BEGIN IMMEDIATE")
            row = self._select_record(kind, user_id, record_id)
            record = self._row_to_record(kind, row) if row else None
            yield _LockedRecord(self, kind, user_id, record)

    def _select_record(self, kind: RecordKind, user_id: str, record_id: str) -> Optional[sqlite3.Row]:
        return self._conn.execute(
            f"SELECT * FROM {kind.table} WHERE id = ? AND user_id = ?", (record_id, user_id)
        ).fetchone()

    def _write_locked_record(
        self,
        kind: RecordKind,
        user_id: str,
        record_id: str,
        changes: Dict[str, Any],
        updated_at: datetime,
    ) -> EditableRecord:
        allowed = set(kind.content_fields)
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown {kind.value} fields: {', '.join(sorted(unknown))}")
        assignments = [f"{column} = ?" for column in changes]
        params: List[Any] = [self._to_db(value) for value in changes.values()]
        assignments.append("updated_at = ?")
        params.extend([self._format(updated_at), record_id, user_id])
        self._conn.execute(
            f"UPDATE {kind.table} SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
            params,
        )
        row = self._select_record(kind, user_id, record_id)
        if not row:
            raise RuntimeError(f"Failed to update {kind.value} record {record_id}.")
        return self._row_to_record(kind, row)

    # EmailQueueRepository API ---------------------------------------------
    def insert_email(
        self,
        to_address: str,
        subject: str,
        body_text: str,
        body_html: Optional[str],
        template: EmailTemplate,
        user_id: Optional[str],
        max_attempts: int,
        now: datetime,
    ) -> QueuedEmail:
        email_id = self._new_id()
        stamp = self._format(now)
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO email_queue (
                    id, to_address, subject, body_text, body_html, template, user_id,
                    attempts, max_attempts, next_retry_at, status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?)
                """,
                (
                    email_id,
                    to_address,
                    subject,
                    body_text,
                    body_html,
                    template.value,
                    user_id,
                    max_attempts,
                    stamp,
                    EmailStatus.PENDING.value,
                    stamp,
                    stamp,
                ),
            )
            row = self._select_email(email_id)
        if not row:
            raise RuntimeError("Failed to enqueue email.")
        return self._row_to_email(row)

    def get_email(self, email_id: str) -> Optional[QueuedEmail]:
        with self._lock:
            row = self._select_email(email_id)
        return self._row_to_email(row) if row else None

    def list_emails(self, status: Optional[EmailStatus], limit: int) -> List[QueuedEmail]:
        query = "SELECT * FROM email_queue"
        params: List[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_email(row) for row in rows]

    def claim_ready_emails(
        self,
        now: datetime,
        lease_until: datetime,
        limit: int,
        due_by: Optional[datetime] = None,
    ) -> List[QueuedEmail]:
        stamp = self._format(now)
        due_stamp = self._format(due_by) if due_by is not None else stamp
        with self._lock, self._conn:
            self._conn.execute("BEGIN IMMEDIATE")
            rows = self._conn.execute(
                """
                SELECT id FROM email_queue
                WHERE status = ?
                  AND next_retry_at IS NOT NULL AND next_retry_at <= ?
                  AND (claimed_until IS NULL OR claimed_until <= ?)
                ORDER BY next_retry_at ASC
                LIMIT ?
                """,
                (EmailStatus.PENDING.value, due_stamp, stamp, limit),
            ).fetchall()
            ids = [row["id"] for row in rows]
            if not ids:
                return []
            placeholders = ", ".join("?" for _ in ids)
            self._conn.execute(
                f"UPDATE email_queue SET claimed_until = ? WHERE id IN ({placeholders})",
                [self._format(lease_until), *ids],
            )
            claimed = self._conn.execute(
                f"SELECT * FROM email_queue WHERE id IN ({placeholders}) ORDER BY next_retry_at ASC",
                ids,
            ).fetchall()
        return [self._row_to_email(row) for row in claimed]

    def complete_email(self, email_id: str, expected_attempts: int, sent_at: datetime) -> Optional[QueuedEmail]:
        stamp = self._format(sent_at)
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                UPDATE email_queue
                SET status = ?, sent_at = ?, next_retry_at = NULL, claimed_until = NULL,
                    error_message = NULL, updated_at = ?
                WHERE id = ? AND status = ? AND attempts = ?
                """,
                (
                    EmailStatus.SENT.value,
                    stamp,
                    stamp,
                    email_id,
                    EmailStatus.PENDING.value,
                    expected_attempts,
                ),
            )
            if cur.rowcount == 0:
                return None
            row = self._select_email(email_id)
        return self._row_to_email(row) if row else None

    def fail_email_attempt(
        self,
        email_id: str,
        expected_attempts: int,
        attempts: int,
        status: EmailStatus,
        next_retry_at: Optional[datetime],
        error_message: str,
        now: datetime,
        hold_until: Optional[datetime] = None,
    ) -> Optional[QueuedEmail]:
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                UPDATE email_queue
                SET attempts = ?, status = ?, next_retry_at = ?, error_message = ?,
                    claimed_until = ?, updated_at = ?
                WHERE id = ? AND status = ? AND attempts = ?
                """,
                (
                    attempts,
                    status.value,
                    self._format(next_retry_at),
                    error_message,
                    self._format(hold_until),
                    self._format(now),
                    email_id,
                    EmailStatus.PENDING.value,
                    expected_attempts,
                ),
            )
            if cur.rowcount == 0:
                return None
            row = self._select_email(email_id)
        return self._row_to_email(row) if row else None

    def cancel_email(self, email_id: str, error_message: str, now: datetime) -> Optional[QueuedEmail]:
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                UPDATE email_queue
                SET status = ?, attempts = max_attempts, next_retry_at = NULL,
                    claimed_until = NULL, error_message = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    EmailStatus.FAILED.value,
                    error_message,
                    self._format(now),
                    email_id,
                    EmailStatus.PENDING.value,
                ),
            )
            if cur.rowcount == 0:
                return None
            row = self._select_email(email_id)
        return self._row_to_email(row) if row else None

    def release_email_claim(self, email_id: str, claimed_until: datetime) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "UPDATE email_queue SET claimed_until = NULL WHERE id = ? AND claimed_until = ?",
                (email_id, self._format(claimed_until)),
            )
            return cur.rowcount > 0

    def _select_email(self, email_id: str) -> Optional[sqlite3.Row]:
        return self._conn.execute("SELECT * FROM email_queue WHERE id = ?", (email_id,)).fetchone()

    # LoginAttemptRepository API -------------------------------------------
    def append_login_attempt(
        self,
        email: str,
        ip_address: Optional[str],
        success: bool,
        attempt_at: datetime,
    ) -> LoginAttemptRecord:
        attempt_id = self._new_id()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO login_attempts (id, email, ip_address, success, attempt_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (attempt_id, email, ip_address, int(success), self._format(attempt_at)),
            )
        return LoginAttemptRecord(
            id=attempt_id,
            email=email,
            ip_address=ip_address,
            success=success,
            attempt_at=ensure_utc(attempt_at),
        )

    def count_failed_attempts(self, email: str, window_start: datetime, until: Optional[datetime]) -> int:
        query = "SELECT COUNT(*) AS total FROM login_attempts WHERE email = ? AND success = 0 AND attempt_at >= ?"
        params: List[Any] = [email, self._format(window_start)]
        if until is not None:
            query += " AND attempt_at <= ?"
            params.append(self._format(until))
        with self._lock:
            row = self._conn.execute(query, params).fetchone()
        return int(row["total"]) if row else 0

    def nth_recent_failure(
        self,
        email: str,
        n: int,
        window_start: datetime,
        until: Optional[datetime],
    ) -> Optional[datetime]:
        if n < 1:
            raise ValueError("n must be at least 1.")
        query = "SELECT attempt_at FROM login_attempts WHERE email = ? AND success = 0 AND attempt_at >= ?"
        params: List[Any] = [email, self._format(window_start)]
        if until is not None:
            query += " AND attempt_at <= ?"
            params.append(self._format(until))
        query += " ORDER BY attempt_at DESC LIMIT 1 OFFSET ?"
        params.append(n - 1)
        with self._lock:
            row = self._conn.execute(query, params).fetchone()
        return self._parse_datetime(row["attempt_at"]) if row else None

    # Helpers ----------------------------------------------------------------
    def _now(self) -> str:
        return self._format(self._clock())

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    @staticmethod
    def _format(value: Optional[datetime]) -> Optional[str]:
        # Fixed-width UTC ISO strings keep lexical and chronological order aligned.
        if value is None:
            return None
        return ensure_utc(value).isoformat(timespec="microseconds")

    @classmethod
    def _to_db(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return cls._format(value)
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, bool):
            return int(value)
        return value

    @staticmethod
    def _parse_datetime(value: str) -> datetime:
        result = datetime.fromisoformat(value)
        if result.tzinfo is None:
            return result.replace(tzinfo=timezone.utc)
        return result.astimezone(timezone.utc)

    def _parse_optional(self, value: Optional[str]) -> Optional[datetime]:
        return self._parse_datetime(value) if value else None

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            email_confirmed_at=self._parse_optional(row["email_confirmed_at"]),
            verification_token=row["verification_token"],
            verification_expires_at=self._parse_optional(row["verification_expires_at"]),
            reset_token=row["reset_token"],
            reset_expires_at=self._parse_optional(row["reset_expires_at"]),
            unlock_token=row["unlock_token"],
            lockout_cleared_at=self._parse_optional(row["lockout_cleared_at"]),
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_record(self, kind: RecordKind, row: sqlite3.Row) -> EditableRecord:
        values: Dict[str, Any] = {"id": row["id"], "user_id": row["user_id"]}
        for column in kind.content_fields:
            value = row[column]
            if column in kind.date_fields:
                value = date.fromisoformat(value) if value else None
            elif column in kind.flag_fields:
                value = bool(value)
            values[column] = value
        values["created_at"] = self._parse_datetime(row["created_at"])
        values["updated_at"] = self._parse_datetime(row["updated_at"])
        return kind.model(**values)

    def _row_to_email(self, row: sqlite3.Row) -> QueuedEmail:
        return QueuedEmail(
            id=row["id"],
            to_address=row["to_address"],
            subject=row["subject"],
            body_text=row["body_text"],
            body_html=row["body_html"],
            template=EmailTemplate(row["template"]),
            user_id=row["user_id"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            next_retry_at=self._parse_optional(row["next_retry_at"]),
            status=EmailStatus(row["status"]),
            error_message=row["error_message"],
            sent_at=self._parse_optional(row["sent_at"]),
            claimed_until=self._parse_optional(row["claimed_until"]),
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )


class _LockedRecord:
    """Row handle valid only inside ``SQLitePersistence.lock_record``."""

    def __init__(
        self,
        persistence: SQLitePersistence,
        kind: RecordKind,
        user_id: str,
        record: Optional[EditableRecord],
    ) -> None:
        self._persistence = persistence
        self._kind = kind
        self._user_id = user_id
        self.record = record

    def apply(self, changes: Dict[str, Any], updated_at: datetime) -> EditableRecord:
        if self.record is None:
            raise RuntimeError("Cannot update a record that does not exist.")
        self.record = self._persistence._write_locked_record(
            self._kind, self._user_id, self.record.id, changes, updated_at
        )
        return self.record
