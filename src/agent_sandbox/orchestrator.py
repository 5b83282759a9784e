"""Task orchestration: screening, lifecycle transitions, model execution and audit.

Submission runs the screening workflow (classify -> redact -> build context)
synchronously and returns the task id. Execution happens on a worker thread
tracked by a ``Future``; each model call runs on a second pool so the worker
can stop waiting once the task's time budget is spent. A late model result is
discarded because terminal tasks never transition again.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from collections.abc import Mapping
from concurrent import futures
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from agent_sandbox.audit import AuditLog
from agent_sandbox.config.settings import Settings
from agent_sandbox.errors import (
    ExecutionTimeoutError,
    InvalidTransitionError,
    ModelInvocationError,
    TaskValidationError,
)
from agent_sandbox.graph.state import initial_state
from agent_sandbox.graph.workflow import build_screening_graph
from agent_sandbox.llm import ChatMessage, ModelClient
from agent_sandbox.security.context import MAX_DURATION_MS, MAX_RETRIES, ExecutionContext
from agent_sandbox.security.policy import DEFAULT_POLICY, CapabilityPolicy, validate_policy
from agent_sandbox.state import TaskStatus
from agent_sandbox.storage.base import TaskStorage
from agent_sandbox.storage.models import AuditEntry, TaskRecord, TaskStatusCounts
from agent_sandbox.tools.registry import ToolSpec, build_registry, tool_catalog

logger = logging.getLogger(__name__)

MAX_TASK_LENGTH = 1000
MAX_HISTORY_LIMIT = 100
TASK_ID_PATTERN = re.compile(r"^task-[0-9a-f]{32}$")


class SubmissionResult(BaseModel):
    success: bool
    task_id: str
    error: str | None = None
    message: str | None = None


class TaskHistoryPage(BaseModel):
    tasks: list[TaskRecord] = Field(default_factory=list)
    total: int = 0


def new_task_id() -> str:
    return f"task-{uuid4().hex}"


def validate_task_id(task_id: str) -> str:
    if not isinstance(task_id, str) or not TASK_ID_PATTERN.match(task_id):
        raise TaskValidationError("Malformed task id")
    return task_id


class TaskOrchestrator:
    """Own the task state machine from submission to a terminal state."""

    def __init__(
        self,
        *,
        storage: TaskStorage,
        model_client: ModelClient,
        registry: Mapping[str, ToolSpec] | None = None,
        policy: CapabilityPolicy = DEFAULT_POLICY,
        max_task_length: int = MAX_TASK_LENGTH,
        max_duration_ms: int = MAX_DURATION_MS,
        max_retries: int = MAX_RETRIES,
        retry_backoff_s: float = 0.5,
        workers: int = 4,
    ) -> None:
        self.registry = registry or build_registry()
        validate_policy(policy, self.registry)
        self.policy = policy
        self.storage = storage
        self.model_client = model_client
        self.audit = AuditLog(storage)
        self.max_task_length = max_task_length
        self.retry_backoff_s = retry_backoff_s
        self._screening = build_screening_graph(
            policy=policy,
            max_duration_ms=max_duration_ms,
            max_retries=max_retries,
        )
        self._task_pool = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="sandbox-task"
        )
        self._model_pool = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="sandbox-model"
        )
        self._guard = threading.Lock()
        self._in_flight: dict[str, Future] = {}
        self._task_locks: dict[str, threading.Lock] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        storage: TaskStorage,
        model_client: ModelClient,
    ) -> TaskOrchestrator:
        return cls(
            storage=storage,
            model_client=model_client,
            max_task_length=settings.max_task_length,
            max_duration_ms=settings.task_max_duration_ms,
            max_retries=settings.task_max_retries,
            retry_backoff_s=settings.task_retry_backoff_s,
            workers=settings.task_workers,
        )

    def submit(
        self,
        task: str,
        user_id: str,
        context: dict[str, Any] | None = None,
    ) -> SubmissionResult:
        text = self._validate_task_text(task)
        task_id = new_task_id()
        state = self._screening.invoke(
            initial_state(task_id=task_id, user_id=user_id, task=text, task_context=context)
        )
        decision = state["security_check"]

        if state.get("blocked", False):
            self.audit.record(
                "blocked",
                task_id=task_id,
                user_id=user_id,
                action="submit_task",
                details={"reason": decision.reason, "category": decision.category},
                success=False,
                error_message=decision.reason,
            )
            return SubmissionResult(
                success=False,
                task_id=task_id,
                error=f"Task blocked for security: {decision.reason}",
            )

        execution_context: ExecutionContext = state["execution_context"]
        # Audit before the record exists: a failed audit write must not leave
        # an orphaned pending task.
        self.audit.record(
            "allowed",
            task_id=task_id,
            user_id=user_id,
            session_id=execution_context.session_id,
            action="submit_task",
            details={"redactions": state.get("redactions", {})},
        )
        self.storage.create_task(
            task_id=task_id,
            user_id=user_id,
            original_task=text,
            task=execution_context.task,
            security_check=decision,
        )
        logger.info(
            "task_run event=submitted task_id=%s user_id=%s session_id=%s redactions=%s",
            task_id,
            user_id,
            execution_context.session_id,
            state.get("redactions", {}),
        )

        self._schedule(execution_context, state.get("sanitized_context", {}))
        return SubmissionResult(
            success=True,
            task_id=task_id,
            message="Task submitted successfully",
        )

    def execute(
        self,
        execution_context: ExecutionContext,
        task_context: dict[str, Any] | None = None,
    ) -> TaskRecord | None:
        """Drive one task from pending to a terminal state."""
        task_id = execution_context.task_id
        with self._lock_for(task_id):
            deadline = time.monotonic() + execution_context.max_duration_s
            try:
                self.storage.update_task_status(task_id, status="running")
            except InvalidTransitionError as exc:
                logger.warning("task_run event=skipped task_id=%s reason=%s", task_id, exc)
                return self.storage.get_task(task_id)
            except Exception as exc:  # noqa: BLE001
                logger.exception("task_run event=start_failed task_id=%s", task_id)
                return self._finalize(
                    execution_context, error=f"Task could not be started: {exc}"
                )

            # Anything raised past the running transition must still end the task.
            try:
                self.audit.record(
                    "execution",
                    task_id=task_id,
                    user_id=execution_context.user_id,
                    session_id=execution_context.session_id,
                    action="task_started",
                    details={
                        "sandbox": execution_context.sandbox,
                        "max_duration_ms": execution_context.max_duration_ms,
                        "max_retries": execution_context.max_retries,
                    },
                )
                logger.info("task_run event=start task_id=%s status=%s", task_id, "running")
                messages = self.build_messages(execution_context, task_context)
                result = self._invoke_with_retries(execution_context, messages, deadline)
            except Exception as exc:  # noqa: BLE001
                return self._finalize(execution_context, error=str(exc) or type(exc).__name__)
            return self._finalize(execution_context, result=result)

    def wait_for_task(self, task_id: str, timeout: float | None = None) -> TaskRecord | None:
        with self._guard:
            future = self._in_flight.get(task_id)
        if future is not None:
            futures.wait([future], timeout=timeout)
        return self.storage.get_task(task_id)

    def get_task(self, task_id: str, user_id: str) -> TaskRecord | None:
        """Return the task only to its owner; other callers see "not found"."""
        validate_task_id(task_id)
        record = self.storage.get_task(task_id)
        if record is None:
            return None
        if record.user_id != user_id:
            self.audit.record(
                "warning",
                task_id=task_id,
                user_id=user_id,
                action="access_other_user_task",
                success=False,
            )
            return None
        return record

    def get_task_audit(self, task_id: str, user_id: str) -> list[AuditEntry] | None:
        if self.get_task(task_id, user_id) is None:
            return None
        return self.audit.entries_for_task(task_id)

    def get_task_history(
        self,
        user_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> TaskHistoryPage:
        if not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise TaskValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
        if offset < 0:
            raise TaskValidationError("offset must be >= 0")
        tasks, total = self.storage.list_user_tasks(user_id, limit=limit, offset=offset)
        return TaskHistoryPage(tasks=tasks, total=total)

    def status_summary(self, user_id: str | None = None) -> TaskStatusCounts:
        return self.storage.count_tasks_by_status(user_id)

    def build_messages(
        self,
        execution_context: ExecutionContext,
        task_context: dict[str, Any] | None = None,
    ) -> list[ChatMessage]:
        policy = execution_context.restrictions
        tool_lines = "\n".join(
            f"- {tool.name}: {tool.description}" for tool in tool_catalog(self.registry)
        )
        system_prompt = (
            "You are a browser automation agent running inside a restricted sandbox.\n"
            f"Available tools:\n{tool_lines}\n"
            f"Allowed actions: {', '.join(policy.allowed_actions)}.\n"
            f"Never perform: {', '.join(policy.restricted_actions)}.\n"
            f"Never use browser APIs: {', '.join(policy.restricted_apis)}.\n"
            f"Never visit: {', '.join(policy.restricted_urls)}.\n"
            "Do not request or reveal personal, financial or authentication data. "
            "Reply with a short plain-text report of the steps taken and the outcome."
        )
        user_prompt = f"Task: {execution_context.task}"
        if task_context:
            user_prompt += f"\nContext: {json.dumps(task_context, sort_keys=True, default=str)}"
        return [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=user_prompt),
        ]

    def shutdown(self, wait: bool = True) -> None:
        self._task_pool.shutdown(wait=wait)
        self._model_pool.shutdown(wait=wait, cancel_futures=True)

    def _validate_task_text(self, task: str) -> str:
        if not isinstance(task, str) or not task.strip():
            raise TaskValidationError("Task text must not be empty")
        if len(task) > self.max_task_length:
            raise TaskValidationError(
                f"Task text must be at most {self.max_task_length} characters"
            )
        return task

    def _schedule(self, execution_context: ExecutionContext, task_context: dict[str, Any]) -> None:
        task_id = execution_context.task_id
        with self._guard:
            future = self._task_pool.submit(self._run_task, execution_context, task_context)
            self._in_flight[task_id] = future
        future.add_done_callback(lambda _: self._forget(task_id))

    def _run_task(
        self,
        execution_context: ExecutionContext,
        task_context: dict[str, Any],
    ) -> TaskRecord | None:
        try:
            return self.execute(execution_context, task_context)
        except Exception:  # noqa: BLE001
            logger.exception("task_run event=crashed task_id=%s", execution_context.task_id)
            return None

    def _invoke_with_retries(
        self,
        execution_context: ExecutionContext,
        messages: list[ChatMessage],
        deadline: float,
    ) -> str:
        attempts = execution_context.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(attempts):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise self._timeout_error(execution_context)

            future = self._model_pool.submit(
                self.model_client.complete, messages, timeout_s=remaining
            )
            done, _ = futures.wait([future], timeout=remaining)
            if not done:
                future.cancel()
                self._audit_model_call(
                    execution_context, attempt + 1, error="timed out waiting for model"
                )
                raise self._timeout_error(execution_context)

            try:
                text = future.result()
                if not isinstance(text, str) or not text.strip():
                    raise ModelInvocationError("Model returned an empty response")
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                self._audit_model_call(execution_context, attempt + 1, error=str(exc))
                logger.warning(
                    "task_run event=model_attempt_failed task_id=%s attempt=%d/%d reason=%s",
                    execution_context.task_id,
                    attempt + 1,
                    attempts,
                    exc,
                )
                if attempt < attempts - 1 and self.retry_backoff_s > 0:
                    time.sleep(min(self.retry_backoff_s, max(0.0, deadline - time.monotonic())))
                continue

            self._audit_model_call(execution_context, attempt + 1)
            return text

        if last_error is None:
            raise ModelInvocationError("Model invocation failed")
        raise last_error

    def _audit_model_call(
        self,
        execution_context: ExecutionContext,
        attempt: int,
        *,
        error: str | None = None,
    ) -> None:
        self.audit.record(
            "execution",
            task_id=execution_context.task_id,
            user_id=execution_context.user_id,
            session_id=execution_context.session_id,
            action="model_call",
            details={"attempt": attempt},
            success=error is None,
            error_message=error,
        )

    def _finalize(
        self,
        execution_context: ExecutionContext,
        *,
        result: str | None = None,
        error: str | None = None,
    ) -> TaskRecord | None:
        task_id = execution_context.task_id
        status: TaskStatus = "failed" if error is not None else "completed"
        try:
            record = self.storage.update_task_status(
                task_id,
                status=status,
                result=result,
                error=error,
            )
        except InvalidTransitionError as exc:
            logger.warning("task_run event=result_discarded task_id=%s reason=%s", task_id, exc)
            return self.storage.get_task(task_id)
        except Exception as exc:  # noqa: BLE001
            if status != "completed":
                raise
            logger.exception("task_run event=persist_failed task_id=%s", task_id)
            return self._finalize(
                execution_context,
                error=f"Failed to persist task result: {exc}",
            )

        self.audit.record(
            "execution" if status == "completed" else "error",
            task_id=task_id,
            user_id=execution_context.user_id,
            session_id=execution_context.session_id,
            action="task_completed" if status == "completed" else "task_failed",
            details={"status": status},
            success=status == "completed",
            error_message=error,
        )
        logger.info("task_run event=finished task_id=%s status=%s", task_id, status)
        return record

    def _timeout_error(self, execution_context: ExecutionContext) -> ExecutionTimeoutError:
        return ExecutionTimeoutError(
            f"Task exceeded maximum duration of {execution_context.max_duration_ms} ms"
        )

    def _lock_for(self, task_id: str) -> threading.Lock:
        with self._guard:
            return self._task_locks.setdefault(task_id, threading.Lock())

    def _forget(self, task_id: str) -> None:
        with self._guard:
            self._in_flight.pop(task_id, None)
            self._task_locks.pop(task_id, None)
