"""Immutable execution context handed to one task execution attempt."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from agent_sandbox.security.policy import DEFAULT_POLICY, CapabilityPolicy

MAX_DURATION_MS = 30_000
MAX_RETRIES = 3


@dataclass(frozen=True)
class ExecutionContext:
    task_id: str
    task: str
    user_id: str
    session_id: str
    timestamp: datetime
    restrictions: CapabilityPolicy
    sandbox: bool = True
    max_duration_ms: int = MAX_DURATION_MS
    max_retries: int = MAX_RETRIES

    @property
    def max_duration_s(self) -> float:
        return self.max_duration_ms / 1000.0


def new_session_id() -> str:
    return f"session-{uuid4().hex}"


def create_execution_context(
    task_id: str,
    sanitized_task: str,
    user_id: str,
    *,
    session_id: str | None = None,
    policy: CapabilityPolicy = DEFAULT_POLICY,
    max_duration_ms: int = MAX_DURATION_MS,
    max_retries: int = MAX_RETRIES,
) -> ExecutionContext:
    return ExecutionContext(
        task_id=task_id,
        task=sanitized_task,
        user_id=user_id,
        session_id=session_id or new_session_id(),
        timestamp=datetime.now(UTC),
        restrictions=policy,
        sandbox=True,
        max_duration_ms=max_duration_ms,
        max_retries=max_retries,
    )
