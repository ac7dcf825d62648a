"""Agent server client that issues curl commands inside an execution context.

The agent listens on localhost inside the sandbox, so every call is a shell command
run through the context rather than a direct HTTP request from this process.
"""

from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from sandbox_orchestrator.errors import (
    SessionCreationError,
    UnexpectedSessionResponseError,
    UpstreamSessionError,
)
from sandbox_orchestrator.opencode.schemas import (
    CreateSessionRequest,
    ErrorEnvelope,
    PromptRequest,
    SessionResponse,
    TextPromptPart,
)
from sandbox_orchestrator.sandbox.base import DetachedProcess, Sandbox, SandboxError

logger = logging.getLogger(__name__)

NOT_READY_SENTINEL = "not ready"
PROBE_GRACE_S = 1.0


@dataclass(frozen=True)
class CurlResult:
    data: Any
    raw: str
    error: str | None = None


def build_curl_command(method: str, url: str, body: Any = None) -> str:
    args = ["curl", "-s", "-X", method, "-H", "Content-Type: application/json"]
    if body is not None:
        args.extend(["-d", json.dumps(body)])
    args.append(url)
    return shlex.join(args)


class OpenCodeClient:
    def __init__(self, sandbox: Sandbox, *, base_url: str, cwd: str | None = None) -> None:
        self.sandbox = sandbox
        self.base_url = base_url.rstrip("/")
        self.cwd = cwd

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def request_json(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        context: str = "curl",
    ) -> CurlResult:
        command = build_curl_command(method, self.url(path), body)
        logger.debug("opencode_curl event=exec context=%s command=%s", context, command)
        result = await self.sandbox.run(command)
        logger.debug(
            "opencode_curl event=done context=%s exit_code=%d stdout=%s stderr=%s",
            context,
            result.exit_code,
            result.stdout[:400],
            result.stderr[:400],
        )
        if not result.success:
            return CurlResult(
                data=None,
                raw=result.stderr,
                error=f"curl failed: {result.stderr}",
            )
        try:
            return CurlResult(data=json.loads(result.stdout), raw=result.stdout)
        except json.JSONDecodeError as exc:
            return CurlResult(data=None, raw=result.stdout, error=f"Failed to parse JSON: {exc}")

    async def is_ready(self, *, timeout_s: float = 2.0) -> bool:
        """One bounded probe; curl and the exec itself both give up after ``timeout_s``."""
        command = (
            f"curl -sf --max-time {timeout_s:g} {shlex.quote(self.url('/session'))} "
            f"|| echo '{NOT_READY_SENTINEL}'"
        )
        try:
            result = await self.sandbox.run(command, timeout_s=timeout_s + PROBE_GRACE_S)
        except SandboxError as exc:
            logger.debug("opencode_probe event=transport_error reason=%s", exc)
            return False
        return result.success and NOT_READY_SENTINEL not in result.stdout

    async def create_session(self, title: str) -> str:
        result = await self.request_json(
            "POST",
            "/session",
            CreateSessionRequest(title=title).model_dump(),
            context="create_session",
        )
        if result.error:
            raise SessionCreationError(f"Failed to create session: {result.error}")

        try:
            return SessionResponse.model_validate(result.data).id
        except ValidationError:
            pass

        try:
            detail = ErrorEnvelope.model_validate(result.data).detail()
        except ValidationError:
            detail = None
        if detail:
            raise UpstreamSessionError(f"OpenCode API error: {detail}")

        logger.error("opencode_session event=unexpected_shape raw=%s", result.raw[:1000])
        raise UnexpectedSessionResponseError(
            f"Unexpected session response format: {json.dumps(result.data)}",
            raw=result.data,
        )

    async def dispatch_prompt(self, session_id: str, prompt: str) -> DetachedProcess:
        # The message endpoint blocks until the agent finishes; launch it detached.
        body = PromptRequest(parts=[TextPromptPart(text=prompt)]).model_dump()
        url = self.url(f"/session/{_segment(session_id)}/message")
        command = build_curl_command("POST", url, body)
        return await self.sandbox.start_detached(command, cwd=self.cwd)

    async def abort(self, session_id: str) -> CurlResult:
        return await self.request_json(
            "POST",
            f"/session/{_segment(session_id)}/abort",
            context="abort",
        )

    def event_stream_command(self) -> str:
        return shlex.join(
            ["curl", "-sN", "-H", "Accept: text/event-stream", self.url("/event")]
        )


def _segment(value: str) -> str:
    return quote(value, safe="")
