"""Storage models shared by API and persistence backends."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from agent_sandbox.security.classifier import SecurityDecision
from agent_sandbox.state import TaskStatus

AuditEventType = Literal["blocked", "allowed", "warning", "error", "execution"]


class TaskRecord(BaseModel):
    """Persisted task record."""

    task_id: str
    user_id: str
    # Raw submission kept for the owner's record; never logged, prompted or returned.
    original_task: str
    task: str
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    result: str | None = None
    error: str | None = None
    security_check: SecurityDecision = Field(default_factory=lambda: SecurityDecision(safe=True))


class AuditEntry(BaseModel):
    """One append-only audit record for a security decision or execution step."""

    entry_id: int
    task_id: str
    session_id: str | None = None
    user_id: str
    event_type: AuditEventType
    action: str
    details: dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    error_message: str | None = None
    created_at: datetime


class TaskStatusCounts(BaseModel):
    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
