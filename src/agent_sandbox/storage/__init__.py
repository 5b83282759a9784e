"""Storage backends and models."""

from agent_sandbox.storage.base import TaskStorage
from agent_sandbox.storage.memory import InMemoryTaskStorage
from agent_sandbox.storage.models import AuditEntry, TaskRecord, TaskStatusCounts
from agent_sandbox.storage.postgres import PostgresTaskStorage

__all__ = [
    "AuditEntry",
    "InMemoryTaskStorage",
    "PostgresTaskStorage",
    "TaskRecord",
    "TaskStatusCounts",
    "TaskStorage",
]
