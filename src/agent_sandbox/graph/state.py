"""Typed state contract for the submission screening workflow."""

from typing import Any, TypedDict

from agent_sandbox.security.classifier import SecurityDecision
from agent_sandbox.security.context import ExecutionContext


class ScreeningState(TypedDict, total=False):
    task_id: str
    user_id: str
    task: str
    task_context: dict[str, Any]
    security_check: SecurityDecision
    blocked: bool
    sanitized_task: str
    sanitized_context: dict[str, Any]
    redactions: dict[str, int]
    execution_context: ExecutionContext | None


def initial_state(
    task_id: str,
    user_id: str,
    task: str,
    task_context: dict[str, Any] | None = None,
) -> ScreeningState:
    return {
        "task_id": task_id,
        "user_id": user_id,
        "task": task,
        "task_context": dict(task_context or {}),
        "blocked": False,
        "redactions": {},
        "execution_context": None,
    }
