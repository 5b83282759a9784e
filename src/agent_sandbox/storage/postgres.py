"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Iterator

from agent_sandbox.errors import InvalidTransitionError, StorageUnavailableError
from agent_sandbox.security.classifier import SecurityDecision
from agent_sandbox.state import ALLOWED_TRANSITIONS, TaskStatus
from agent_sandbox.storage.models import AuditEntry, AuditEventType, TaskRecord, TaskStatusCounts


class PostgresTaskStorage:
    """Persist tasks and audit entries in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("AGENT_SANDBOX_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sandbox_tasks (
                    task_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    original_task TEXT NOT NULL,
                    task TEXT NOT NULL,
                    status TEXT NOT NULL,
                    result TEXT,
                    error TEXT,
                    security_check_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    completed_at TIMESTAMPTZ
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sandbox_tasks_user_created
                ON sandbox_tasks(user_id, created_at DESC)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sandbox_tasks_status
                ON sandbox_tasks(status)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS execution_history (
                    entry_id BIGSERIAL PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    session_id TEXT,
                    user_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    action TEXT NOT NULL,
                    details_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    success BOOLEAN NOT NULL,
                    error_message TEXT,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            # Blocked submissions are audited without a task row, so no foreign key.
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_execution_history_task_id
                ON execution_history(task_id)
                """)
            conn.commit()

    def create_task(
        self,
        *,
        task_id: str,
        user_id: str,
        original_task: str,
        task: str,
        security_check: SecurityDecision,
    ) -> TaskRecord:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sandbox_tasks (
                    task_id,
                    user_id,
                    original_task,
                    task,
                    status,
                    result,
                    error,
                    security_check_json,
                    created_at,
                    updated_at,
                    completed_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    task_id,
                    user_id,
                    original_task,
                    task,
                    "pending",
                    None,
                    None,
                    self._json_wrapper(security_check.model_dump(mode="json")),
                    now,
                    now,
                    None,
                ),
            )
            conn.commit()
        created = self.get_task(task_id)
        if created is None:
            raise RuntimeError("Failed to load created task")
        return created

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM sandbox_tasks WHERE task_id = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task_status(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
        error: str | None = None,
    ) -> TaskRecord:
        predecessors = [
            current for current, targets in ALLOWED_TRANSITIONS.items() if status in targets
        ]
        now = datetime.now(tz=UTC)
        terminal = status in {"completed", "failed"}
        with self._lock, self._connect() as conn:
            # Guarded update: a task already past `status` is never rewritten.
            row = conn.execute(
                """
                UPDATE sandbox_tasks
                SET status = %s,
                    result = %s,
                    error = %s,
                    updated_at = %s,
                    completed_at = %s
                WHERE task_id = %s
                  AND status = ANY(%s)
                RETURNING task_id
                """,
                (
                    status,
                    result if status == "completed" else None,
                    error if status == "failed" else None,
                    now,
                    now if terminal else None,
                    task_id,
                    predecessors,
                ),
            ).fetchone()
            conn.commit()

        refreshed = self.get_task(task_id)
        if refreshed is None:
            raise KeyError(f"Task {task_id} does not exist")
        if row is None:
            raise InvalidTransitionError(refreshed.status, status)
        return refreshed

    def list_user_tasks(
        self,
        user_id: str,
        *,
        limit: int,
        offset: int,
    ) -> tuple[list[TaskRecord], int]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM sandbox_tasks
                WHERE user_id = %s
                ORDER BY created_at DESC, task_id DESC
                LIMIT %s OFFSET %s
                """,
                (user_id, limit, offset),
            ).fetchall()
            total_row = conn.execute(
                "SELECT COUNT(*) AS total FROM sandbox_tasks WHERE user_id = %s",
                (user_id,),
            ).fetchone()
        total = int(total_row["total"]) if total_row else 0
        return [self._row_to_task(row) for row in rows], total

    def count_tasks_by_status(self, user_id: str | None = None) -> TaskStatusCounts:
        query = "SELECT status, COUNT(*) AS count FROM sandbox_tasks"
        params: tuple[Any, ...] = ()
        if user_id is not None:
            query += " WHERE user_id = %s"
            params = (user_id,)
        query += " GROUP BY status"
        with self._lock, self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        counts: dict[str, int] = {str(row["status"]): int(row["count"]) for row in rows}
        counts["total"] = sum(counts.values())
        return TaskStatusCounts(**counts)

    def append_audit_entry(
        self,
        *,
        task_id: str,
        session_id: str | None,
        user_id: str,
        event_type: AuditEventType,
        action: str,
        details: dict[str, Any],
        success: bool,
        error_message: str | None = None,
    ) -> AuditEntry:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO execution_history (
                    task_id,
                    session_id,
                    user_id,
                    event_type,
                    action,
                    details_json,
                    success,
                    error_message,
                    created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    task_id,
                    session_id,
                    user_id,
                    event_type,
                    action,
                    self._json_wrapper(details),
                    success,
                    error_message,
                    now,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist audit entry")
        return self._row_to_audit_entry(row)

    def list_audit_entries(self, task_id: str) -> list[AuditEntry]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM execution_history
                WHERE task_id = %s
                ORDER BY entry_id ASC
                """,
                (task_id,),
            ).fetchall()
        return [self._row_to_audit_entry(row) for row in rows]

    @contextmanager
    def _connect(self) -> Iterator[Any]:
        try:
            conn = self._psycopg.connect(self.database_url, row_factory=self._dict_row)
        except self._psycopg.OperationalError as exc:
            raise StorageUnavailableError(f"Database unavailable: {exc}") from exc
        with conn:
            yield conn

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_object(raw: Any) -> dict[str, Any]:
        if raw is None:
            return {}
        parsed = json.loads(raw) if isinstance(raw, str) else raw
        return parsed if isinstance(parsed, dict) else {}

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> TaskRecord:
        completed_raw = row.get("completed_at")
        return TaskRecord(
            task_id=str(row["task_id"]),
            user_id=str(row["user_id"]),
            original_task=row["original_task"],
            task=row["task"],
            status=row["status"],
            result=row.get("result"),
            error=row.get("error"),
            security_check=SecurityDecision.model_validate(
                cls._parse_json_object(row.get("security_check_json")) or {"safe": True}
            ),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
            completed_at=cls._parse_datetime(completed_raw) if completed_raw else None,
        )

    @classmethod
    def _row_to_audit_entry(cls, row: Any) -> AuditEntry:
        return AuditEntry(
            entry_id=int(row["entry_id"]),
            task_id=str(row["task_id"]),
            session_id=row.get("session_id"),
            user_id=str(row["user_id"]),
            event_type=row["event_type"],
            action=row["action"],
            details=cls._parse_json_object(row.get("details_json")),
            success=bool(row["success"]),
            error_message=row.get("error_message"),
            created_at=cls._parse_datetime(row["created_at"]),
        )
