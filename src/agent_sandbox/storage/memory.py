"""In-memory storage backend for tests and single-process local runs."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from agent_sandbox.security.classifier import SecurityDecision
from agent_sandbox.state import TaskStatus, ensure_transition
from agent_sandbox.storage.models import AuditEntry, AuditEventType, TaskRecord, TaskStatusCounts


class InMemoryTaskStorage:
    """Simple in-memory implementation guarded by one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, TaskRecord] = {}
        self._audit_entries: list[AuditEntry] = []
        self._next_entry_id = 1

    def migrate(self) -> None:
        return None

    def create_task(
        self,
        *,
        task_id: str,
        user_id: str,
        original_task: str,
        task: str,
        security_check: SecurityDecision,
    ) -> TaskRecord:
        now = datetime.now(UTC)
        record = TaskRecord(
            task_id=task_id,
            user_id=user_id,
            original_task=original_task,
            task=task,
            status="pending",
            created_at=now,
            updated_at=now,
            security_check=security_check,
        )
        with self._lock:
            if task_id in self._tasks:
                raise ValueError(f"Task {task_id} already exists")
            self._tasks[task_id] = record
        return record

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock:
            record = self._tasks.get(task_id)
        return record.model_copy(deep=True) if record else None

    def update_task_status(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
        error: str | None = None,
    ) -> TaskRecord:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise KeyError(f"Task {task_id} does not exist")
            ensure_transition(current.status, status)
            now = datetime.now(UTC)
            update: dict[str, Any] = {"status": status, "updated_at": now}
            if status == "completed":
                update["result"] = result
                update["completed_at"] = now
            elif status == "failed":
                update["error"] = error
                update["completed_at"] = now
            updated = current.model_copy(update=update)
            self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    def list_user_tasks(
        self,
        user_id: str,
        *,
        limit: int,
        offset: int,
    ) -> tuple[list[TaskRecord], int]:
        with self._lock:
            # Reversed insertion order breaks created_at ties newest-first.
            owned = [task for task in reversed(self._tasks.values()) if task.user_id == user_id]
        owned.sort(key=lambda task: task.created_at, reverse=True)
        page = owned[offset : offset + limit]
        return [task.model_copy(deep=True) for task in page], len(owned)

    def count_tasks_by_status(self, user_id: str | None = None) -> TaskStatusCounts:
        with self._lock:
            tasks = [
                task for task in self._tasks.values() if user_id is None or task.user_id == user_id
            ]
        counts: dict[str, int] = {"total": len(tasks)}
        for task in tasks:
            counts[task.status] = counts.get(task.status, 0) + 1
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
        with self._lock:
            entry = AuditEntry(
                entry_id=self._next_entry_id,
                task_id=task_id,
                session_id=session_id,
                user_id=user_id,
                event_type=event_type,
                action=action,
                details=dict(details),
                success=success,
                error_message=error_message,
                created_at=datetime.now(UTC),
            )
            self._next_entry_id += 1
            self._audit_entries.append(entry)
        return entry

    def list_audit_entries(self, task_id: str) -> list[AuditEntry]:
        with self._lock:
            return [entry for entry in self._audit_entries if entry.task_id == task_id]
