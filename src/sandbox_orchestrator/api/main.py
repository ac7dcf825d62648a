"""FastAPI app entrypoint for sandbox-orchestrator.

The server keeps no task table: every route receives the task id (and, where needed, the
agent session id) from the caller and goes straight to that task's execution context.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from sandbox_orchestrator.config.settings import Settings, get_settings
from sandbox_orchestrator.errors import TransportDisconnect
from sandbox_orchestrator.events.adapter import EventStreamAdapter
from sandbox_orchestrator.events.models import NormalizedEvent
from sandbox_orchestrator.events.status import derive_status
from sandbox_orchestrator.sandbox.base import SandboxProvider
from sandbox_orchestrator.sandbox.docker import DockerSandboxProvider
from sandbox_orchestrator.tasks.bootstrap import TaskBootstrapper
from sandbox_orchestrator.tasks.models import (
    CreateTaskRequest,
    DataResponse,
    ErrorResponse,
    Task,
    TaskAbort,
    TaskDiff,
)
from sandbox_orchestrator.tasks.operations import abort_task, get_diff

logger = logging.getLogger(__name__)


def create_app(
    *,
    provider: SandboxProvider | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    sandbox_provider = provider or DockerSandboxProvider(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "app event=startup provider=%s agent_port=%d",
            type(sandbox_provider).__name__,
            settings.agent_port,
        )
        if settings.agent_tls_insecure:
            logger.warning(
                "app event=tls_verification_disabled "
                "detail=agents will run with NODE_TLS_REJECT_UNAUTHORIZED=0"
            )
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.provider = sandbox_provider
    app.state.bootstrapper = TaskBootstrapper(provider=sandbox_provider, settings=settings)
    app.state.events = EventStreamAdapter(provider=sandbox_provider, settings=settings)

    @app.exception_handler(RequestValidationError)
    async def validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {
            "status": "ok",
            "service": settings.app_name,
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }

    @app.post(
        "/tasks",
        status_code=201,
        response_model=DataResponse[Task],
        responses={500: {"model": ErrorResponse}},
    )
    async def create_task(payload: CreateTaskRequest, request: Request) -> Any:
        bootstrapper: TaskBootstrapper = request.app.state.bootstrapper
        try:
            task = await bootstrapper.create_task(payload.repo_url, payload.branch, payload.prompt)
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_create event=failed repo_url=%s", payload.repo_url)
            return JSONResponse(status_code=500, content={"error": str(exc)})
        return DataResponse[Task](data=task)

    @app.get("/tasks/{task_id}/events")
    async def task_events(
        task_id: str,
        request: Request,
        session_id: str | None = Query(default=None, alias="sessionId"),
    ) -> StreamingResponse:
        adapter: EventStreamAdapter = request.app.state.events
        return StreamingResponse(
            _event_stream(adapter, task_id, session_id),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.get("/tasks/{task_id}/diff", response_model=DataResponse[TaskDiff])
    async def task_diff(task_id: str, request: Request) -> DataResponse[TaskDiff]:
        diff = await get_diff(request.app.state.provider, task_id, settings=settings)
        return DataResponse[TaskDiff](data=TaskDiff(diff=diff, task_id=task_id))

    @app.post(
        "/tasks/{task_id}/abort",
        response_model=DataResponse[TaskAbort],
        responses={400: {"model": ErrorResponse}},
    )
    async def task_abort(
        task_id: str,
        request: Request,
        session_id: str | None = Query(default=None, alias="sessionId"),
    ) -> Any:
        if not session_id:
            return JSONResponse(
                status_code=400,
                content={"error": "sessionId query parameter required"},
            )
        success = await abort_task(
            request.app.state.provider,
            task_id,
            session_id,
            settings=settings,
        )
        return DataResponse[TaskAbort](data=TaskAbort(success=success, task_id=task_id))

    return app


async def _event_stream(
    adapter: EventStreamAdapter,
    task_id: str,
    session_id: str | None,
) -> AsyncGenerator[str, None]:
    seen: list[NormalizedEvent] = []
    subscription = adapter.subscribe(task_id, session_id)
    try:
        async for event in subscription:
            seen.append(event)
            snapshot = derive_status(seen)
            yield _sse_message(
                {
                    "event": event.to_wire(),
                    "derivedStatus": snapshot.status,
                    "isComplete": snapshot.is_complete,
                }
            )
    except TransportDisconnect as exc:
        yield _sse_message({"error": str(exc)}, event="disconnect")
    finally:
        await subscription.aclose()


def _sse_message(payload: dict[str, Any], *, event: str | None = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {json.dumps(payload)}\n\n"


def _validation_message(exc: RequestValidationError) -> str:
    messages: list[str] = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ())[1:])
        message = str(item.get("msg", "invalid value"))
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "Invalid request"


app = create_app()
