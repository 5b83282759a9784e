"""Append-only audit trail for security decisions and execution steps."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from agent_sandbox.storage.base import TaskStorage
from agent_sandbox.storage.models import AuditEntry, AuditEventType

logger = logging.getLogger(__name__)


class AuditLog:
    """Write audit entries to the store and mirror them to the security log."""

    def __init__(self, storage: TaskStorage) -> None:
        self.storage = storage

    def record(
        self,
        event_type: AuditEventType,
        *,
        task_id: str,
        user_id: str,
        action: str,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
        success: bool = True,
        error_message: str | None = None,
    ) -> AuditEntry:
        payload = dict(details or {})
        logger.log(
            logging.WARNING if event_type in {"blocked", "warning", "error"} else logging.INFO,
            "[SECURITY] %s",
            json.dumps(
                {
                    "type": event_type,
                    "task_id": task_id,
                    "user_id": user_id,
                    "session_id": session_id,
                    "action": action,
                    "success": success,
                    "error": error_message,
                    "details": payload,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
                default=str,
            ),
        )
        return self.storage.append_audit_entry(
            task_id=task_id,
            session_id=session_id,
            user_id=user_id,
            event_type=event_type,
            action=action,
            details=payload,
            success=success,
            error_message=error_message,
        )

    def entries_for_task(self, task_id: str) -> list[AuditEntry]:
        return self.storage.list_audit_entries(task_id)
