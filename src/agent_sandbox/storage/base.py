"""Storage interfaces for task lifecycle and audit persistence."""

from __future__ import annotations

from typing import Any, Protocol

from agent_sandbox.security.classifier import SecurityDecision
from agent_sandbox.state import TaskStatus
from agent_sandbox.storage.models import AuditEntry, AuditEventType, TaskRecord, TaskStatusCounts


class TaskStorage(Protocol):
    def migrate(self) -> None: ...

    def create_task(
        self,
        *,
        task_id: str,
        user_id: str,
        original_task: str,
        task: str,
        security_check: SecurityDecision,
    ) -> TaskRecord: ...

    def get_task(self, task_id: str) -> TaskRecord | None: ...

    def update_task_status(
        self,
        task_id: str,
        *,
        status: TaskStatus,
        result: str | None = None,
        error: str | None = None,
    ) -> TaskRecord: ...

    def list_user_tasks(
        self,
        user_id: str,
        *,
        limit: int,
        offset: int,
    ) -> tuple[list[TaskRecord], int]: ...

    def count_tasks_by_status(self, user_id: str | None = None) -> TaskStatusCounts: ...

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
    ) -> AuditEntry: ...

    def list_audit_entries(self, task_id: str) -> list[AuditEntry]: ...
