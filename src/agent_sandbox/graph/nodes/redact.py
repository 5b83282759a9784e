"""Redact node: mask sensitive value shapes in the task and its context."""

from __future__ import annotations

from typing import Any

from agent_sandbox.graph.state import ScreeningState
from agent_sandbox.security.redactor import redact, redaction_counts


def run(state: ScreeningState) -> ScreeningState:
    task = state.get("task", "")
    return {
        "sanitized_task": redact(task),
        "sanitized_context": _redact_values(state.get("task_context", {})),
        "redactions": redaction_counts(task),
    }


def _redact_values(value: Any) -> Any:
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {key: _redact_values(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_redact_values(item) for item in value]
    return value
