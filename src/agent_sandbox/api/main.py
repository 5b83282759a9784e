"""FastAPI app entrypoint for the agent sandbox service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from agent_sandbox.config.settings import Settings, get_settings
from agent_sandbox.errors import StorageUnavailableError, TaskValidationError
from agent_sandbox.llm import ModelClient, build_model_client
from agent_sandbox.orchestrator import MAX_HISTORY_LIMIT, MAX_TASK_LENGTH, TaskOrchestrator
from agent_sandbox.storage.base import TaskStorage
from agent_sandbox.storage.memory import InMemoryTaskStorage
from agent_sandbox.storage.models import AuditEntry, TaskRecord
from agent_sandbox.storage.postgres import PostgresTaskStorage
from agent_sandbox.tools import ToolDefinition, tool_catalog

logger = logging.getLogger(__name__)

NOT_FOUND = "Task not found"


class SubmitTaskRequest(BaseModel):
    task: str = Field(min_length=1, max_length=MAX_TASK_LENGTH)
    context: dict[str, Any] = Field(default_factory=dict)


class SubmitTaskResponse(BaseModel):
    success: bool
    task_id: str
    error: str | None = None
    message: str | None = None


class TaskView(BaseModel):
    id: str
    status: str
    result: str | None = None
    error: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class TaskStatusResponse(BaseModel):
    found: bool
    task: TaskView | None = None
    error: str | None = None


class TaskHistoryItem(BaseModel):
    id: str
    task: str
    status: str
    result: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class TaskHistoryResponse(BaseModel):
    tasks: list[TaskHistoryItem]
    total: int


class TaskAuditResponse(BaseModel):
    found: bool
    entries: list[AuditEntry] = Field(default_factory=list)


def _build_storage(settings: Settings) -> TaskStorage:
    backend = settings.storage_backend.lower().strip()
    if backend == "postgres":
        database_url = settings.resolved_database_url()
        if not database_url:
            raise RuntimeError(
                "Missing database URL. Set AGENT_SANDBOX_DATABASE_URL "
                "or SANDBOX_DATABASE_URL before starting the app."
            )
        return PostgresTaskStorage(database_url)
    if backend != "memory":
        raise RuntimeError(f"Unsupported storage backend: {settings.storage_backend}")
    return InMemoryTaskStorage()


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: TaskStorage | None,
    model_client_override: ModelClient | None,
) -> None:
    if not hasattr(app.state, "storage"):
        app.state.storage = storage_override or _build_storage(settings)
        app.state.storage.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "orchestrator"):
        app.state.orchestrator = TaskOrchestrator.from_settings(
            settings,
            storage=app.state.storage,
            model_client=model_client_override or build_model_client(settings),
        )


def _require_user(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def create_app(
    *,
    storage: TaskStorage | None = None,
    settings_override: Settings | None = None,
    model_client: ModelClient | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    logging.getLogger("agent_sandbox").setLevel(settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            model_client_override=model_client,
        )
        yield
        app.state.orchestrator.shutdown(wait=False)

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            model_client_override=model_client,
        )

    def _get_orchestrator(request: Request) -> TaskOrchestrator:
        if not hasattr(request.app.state, "orchestrator"):
            _ensure_runtime_state(
                request.app,
                settings=settings,
                storage_override=storage,
                model_client_override=model_client,
            )
        return request.app.state.orchestrator

    @app.exception_handler(TaskValidationError)
    async def _validation_error(_: Request, exc: TaskValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(StorageUnavailableError)
    async def _storage_unavailable(_: Request, exc: StorageUnavailableError) -> JSONResponse:
        logger.error("storage event=unavailable reason=%s", exc)
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/tools")
    def tools(request: Request) -> dict[str, list[ToolDefinition]]:
        return {"tools": tool_catalog(_get_orchestrator(request).registry)}

    @app.post("/tasks", response_model=SubmitTaskResponse)
    def submit_task(
        payload: SubmitTaskRequest,
        request: Request,
        user_id: str = Depends(_require_user),
    ) -> SubmitTaskResponse:
        result = _get_orchestrator(request).submit(payload.task, user_id, payload.context)
        return SubmitTaskResponse(**result.model_dump())

    @app.get("/tasks", response_model=TaskHistoryResponse)
    def task_history(
        request: Request,
        limit: int = Query(default=20, ge=1, le=MAX_HISTORY_LIMIT),
        offset: int = Query(default=0, ge=0),
        user_id: str = Depends(_require_user),
    ) -> TaskHistoryResponse:
        page = _get_orchestrator(request).get_task_history(user_id, limit=limit, offset=offset)
        return TaskHistoryResponse(
            tasks=[
                TaskHistoryItem(
                    id=task.task_id,
                    task=task.task,
                    status=task.status,
                    result=task.result,
                    created_at=task.created_at,
                    completed_at=task.completed_at,
                )
                for task in page.tasks
            ],
            total=page.total,
        )

    @app.get("/tasks/{task_id}", response_model=TaskStatusResponse)
    def task_status(
        task_id: str,
        request: Request,
        user_id: str = Depends(_require_user),
    ) -> TaskStatusResponse:
        record = _get_orchestrator(request).get_task(task_id, user_id)
        if record is None:
            return TaskStatusResponse(found=False, error=NOT_FOUND)
        return TaskStatusResponse(found=True, task=_task_view(record))

    @app.get("/tasks/{task_id}/audit", response_model=TaskAuditResponse)
    def task_audit(
        task_id: str,
        request: Request,
        user_id: str = Depends(_require_user),
    ) -> TaskAuditResponse:
        entries = _get_orchestrator(request).get_task_audit(task_id, user_id)
        if entries is None:
            return TaskAuditResponse(found=False)
        return TaskAuditResponse(found=True, entries=entries)

    @app.get("/agent/status")
    def agent_status(request: Request) -> dict[str, Any]:
        counts = _get_orchestrator(request).status_summary()
        return {
            "status": "ready",
            "sandbox": True,
            "total_tasks": counts.total,
            "pending_tasks": counts.pending,
            "running_tasks": counts.running,
            "completed_tasks": counts.completed,
            "failed_tasks": counts.failed,
            "security": {
                "data_protection": True,
                "no_account_access": True,
                "no_payment_access": True,
                "sandbox_active": True,
            },
        }

    @app.get("/agent/security")
    def security_info(request: Request) -> dict[str, Any]:
        policy = _get_orchestrator(request).policy
        return {
            "restrictions": {
                "no_visa": "Credit card and payment information cannot be accessed",
                "no_accounts": "User accounts and authentication cannot be accessed",
                "no_personal_data": "Personal and sensitive data is protected",
                "no_file_system": "File system access is restricted",
                "sandbox_only": "All operations run in isolated sandbox environment",
            },
            "allowed_actions": [
                "Navigate websites",
                "Search information",
                "Read public content",
                "Click elements",
                "Fill forms (non-sensitive)",
                "Scroll pages",
                "Take screenshots",
                "Extract text",
            ],
            "policy": policy.as_dict(),
        }

    return app


def _task_view(record: TaskRecord) -> TaskView:
    return TaskView(
        id=record.task_id,
        status=record.status,
        result=record.result,
        error=record.error,
        created_at=record.created_at,
        completed_at=record.completed_at,
    )


app = create_app()
