"""Task request/response models shared by the API, bootstrap and CLI."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, Literal, TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Informational lifecycle values; live status is derived from the event stream.
TaskStatus = Literal[
    "initializing",
    "cloning",
    "starting",
    "running",
    "completed",
    "error",
    "aborted",
]

TData = TypeVar("TData", bound=BaseModel)


class CamelModel(BaseModel):
    """Serialize with camelCase wire names while accepting either form on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateTaskRequest(CamelModel):
    """Request body for POST /tasks."""

    repo_url: str
    branch: str = Field(default="main", min_length=1)
    prompt: str = Field(min_length=1)

    @field_validator("repo_url")
    @classmethod
    def _require_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("Must be a valid repository URL")
        return value

    @field_validator("prompt")
    @classmethod
    def _require_prompt(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Prompt is required")
        return value


class Task(CamelModel):
    """Task record handed back once at creation; never stored server-side."""

    id: str
    status: TaskStatus
    repo_url: str
    branch: str
    prompt: str
    session_id: str | None = None
    created_at: datetime
    started_at: datetime | None = None


class TaskDiff(CamelModel):
    diff: str
    task_id: str


class TaskAbort(CamelModel):
    success: bool
    task_id: str


class DataResponse(BaseModel, Generic[TData]):
    """``{"data": ...}`` success envelope."""

    data: TData


class ErrorResponse(BaseModel):
    """``{"error": ...}`` failure envelope."""

    error: str
