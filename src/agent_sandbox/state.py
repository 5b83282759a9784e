"""Task lifecycle states and the transitions allowed between them."""

from __future__ import annotations

from typing import Literal

from agent_sandbox.errors import InvalidTransitionError

TaskStatus = Literal["pending", "running", "completed", "failed"]

TASK_STATUSES: tuple[TaskStatus, ...] = ("pending", "running", "completed", "failed")
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# pending -> failed covers tasks that time out or cannot start.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running", "failed"}),
    "running": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
