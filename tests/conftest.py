from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator

import pytest

from agent_sandbox.errors import ModelInvocationError
from agent_sandbox.llm import ChatMessage, SimulatedModelClient
from agent_sandbox.orchestrator import TaskOrchestrator
from agent_sandbox.storage.memory import InMemoryTaskStorage


class RecordingStorage(InMemoryTaskStorage):
    """In-memory store that also remembers every status a task passed through."""

    def __init__(self) -> None:
        super().__init__()
        self.status_history: dict[str, list[str]] = {}

    def create_task(self, **kwargs):
        record = super().create_task(**kwargs)
        self.status_history.setdefault(record.task_id, []).append(record.status)
        return record

    def update_task_status(self, task_id, **kwargs):
        record = super().update_task_status(task_id, **kwargs)
        self.status_history.setdefault(task_id, []).append(record.status)
        return record


class RecordingModelClient(SimulatedModelClient):
    def __init__(self) -> None:
        self.calls: list[list[ChatMessage]] = []

    def complete(self, messages: list[ChatMessage], *, timeout_s: float) -> str:
        self.calls.append(list(messages))
        return super().complete(messages, timeout_s=timeout_s)


class FlakyModelClient:
    def __init__(self, failures: int, *, message: str = "upstream returned 503") -> None:
        self.failures = failures
        self.message = message
        self.calls = 0
        self._lock = threading.Lock()

    def complete(self, messages: list[ChatMessage], *, timeout_s: float) -> str:
        with self._lock:
            self.calls += 1
            call = self.calls
        if call <= self.failures:
            raise ModelInvocationError(self.message)
        return f"Completed after {call} attempt(s)"


class SlowModelClient:
    def __init__(self, delay_s: float) -> None:
        self.delay_s = delay_s
        self.finished = threading.Event()

    def complete(self, messages: list[ChatMessage], *, timeout_s: float) -> str:
        time.sleep(self.delay_s)
        self.finished.set()
        return "late answer"


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def make_orchestrator(
    storage: RecordingStorage,
) -> Iterator[Callable[..., TaskOrchestrator]]:
    created: list[TaskOrchestrator] = []

    def _make(model_client=None, **kwargs) -> TaskOrchestrator:
        kwargs.setdefault("retry_backoff_s", 0.0)
        orchestrator = TaskOrchestrator(
            storage=storage,
            model_client=model_client or RecordingModelClient(),
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in created:
        orchestrator.shutdown(wait=False)
