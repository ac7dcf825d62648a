"""Pass-through operations against an existing task context: diff and abort."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from sandbox_orchestrator.config.settings import Settings
from sandbox_orchestrator.opencode.client import OpenCodeClient
from sandbox_orchestrator.opencode.schemas import ErrorEnvelope
from sandbox_orchestrator.sandbox.base import SandboxError, SandboxProvider

logger = logging.getLogger(__name__)


async def get_diff(provider: SandboxProvider, task_id: str, *, settings: Settings) -> str:
    """Raw ``git diff HEAD`` output; empty when there are no changes or no context."""
    try:
        sandbox = await provider.acquire(task_id, create=False)
        result = await sandbox.run(
            "git diff HEAD",
            cwd=settings.repo_dir,
            timeout_s=settings.command_timeout_s,
        )
    except SandboxError as exc:
        logger.info("task_diff event=unavailable task_id=%s reason=%s", task_id, exc)
        return ""
    if not result.success:
        logger.info(
            "task_diff event=command_failed task_id=%s exit_code=%d",
            task_id,
            result.exit_code,
        )
    return result.stdout or ""


async def abort_task(
    provider: SandboxProvider,
    task_id: str,
    session_id: str,
    *,
    settings: Settings,
) -> bool:
    """Forward an abort to the agent session. Best-effort: always True once forwarded."""
    try:
        sandbox = await provider.acquire(task_id, create=False)
        client = OpenCodeClient(sandbox, base_url=settings.agent_base_url(), cwd=settings.repo_dir)
        result = await client.abort(session_id)
    except SandboxError as exc:
        logger.warning(
            "task_abort event=forward_failed task_id=%s session_id=%s reason=%s",
            task_id,
            session_id,
            exc,
        )
        return True

    detail = _error_detail(result.data)
    if result.error:
        logger.warning(
            "task_abort event=upstream_failed task_id=%s session_id=%s reason=%s",
            task_id,
            session_id,
            result.error,
        )
    elif detail:
        logger.warning(
            "task_abort event=upstream_error task_id=%s session_id=%s detail=%s",
            task_id,
            session_id,
            detail,
        )
    else:
        logger.info("task_abort event=forwarded task_id=%s session_id=%s", task_id, session_id)
    return True


def _error_detail(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    try:
        return ErrorEnvelope.model_validate(data).detail()
    except ValidationError:
        return None
