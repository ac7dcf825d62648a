"""Task bootstrap workflow.

A linear LangGraph graph drives one execution context from empty to "agent is running
and has received the prompt":

    acquire -> clone -> start_agent -> wait_ready -> create_session -> dispatch_prompt

Nodes raise on failure, which stops the graph at that step; nothing is retried.
"""

from __future__ import annotations

import logging
import operator
import shlex
import time
import uuid
from datetime import UTC, datetime
from functools import partial
from typing import Annotated, Any, TypedDict

from langgraph.graph import END, StateGraph

from sandbox_orchestrator.config.settings import Settings
from sandbox_orchestrator.errors import (
    AgentStartError,
    BootstrapError,
    BootstrapTimeoutError,
    CloneError,
    PromptDispatchError,
)
from sandbox_orchestrator.opencode.client import OpenCodeClient
from sandbox_orchestrator.sandbox.base import Sandbox, SandboxError, SandboxProvider
from sandbox_orchestrator.tasks.models import Task
from sandbox_orchestrator.tasks.readiness import wait_until_ready

logger = logging.getLogger(__name__)


class BootstrapState(TypedDict, total=False):
    task_id: str
    repo_url: str
    branch: str
    prompt: str
    sandbox: Any
    session_id: str
    started_at: datetime
    agent_process_id: str
    prompt_process_id: str
    completed_steps: Annotated[list[str], operator.add]


def generate_task_id() -> str:
    return f"task-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def clone_command(repo_url: str, branch: str, target_dir: str) -> str:
    return shlex.join(
        ["git", "clone", "--branch", branch, "--single-branch", "--", repo_url, target_dir]
    )


def session_title(prompt: str, max_chars: int = 50) -> str:
    return f"Task: {prompt[:max_chars]}..."


def build_bootstrap_graph(*, provider: SandboxProvider, settings: Settings):
    def _client(state: BootstrapState) -> OpenCodeClient:
        sandbox: Sandbox = state["sandbox"]
        return OpenCodeClient(sandbox, base_url=settings.agent_base_url(), cwd=settings.repo_dir)

    async def acquire(state: BootstrapState) -> BootstrapState:
        sandbox = await provider.acquire(state["task_id"])
        logger.info("task_bootstrap event=context_acquired task_id=%s", state["task_id"])
        return {"sandbox": sandbox, "completed_steps": ["acquire"]}

    async def clone(state: BootstrapState) -> BootstrapState:
        task_id = state["task_id"]
        logger.info(
            "task_bootstrap event=cloning task_id=%s repo_url=%s branch=%s",
            task_id,
            state["repo_url"],
            state["branch"],
        )
        result = await state["sandbox"].run(
            clone_command(state["repo_url"], state["branch"], settings.repo_dir),
            timeout_s=settings.command_timeout_s,
        )
        if not result.success:
            raise CloneError(f"Failed to clone repository: {result.stderr}")
        logger.info("task_bootstrap event=cloned task_id=%s", task_id)
        return {"completed_steps": ["clone"]}

    async def start_agent(state: BootstrapState) -> BootstrapState:
        task_id = state["task_id"]
        if settings.agent_tls_insecure:
            logger.warning(
                "task_bootstrap event=tls_verification_disabled task_id=%s "
                "detail=agent outbound TLS certificates are NOT verified",
                task_id,
            )
        command = (
            f"{settings.agent_command} --port {settings.agent_port} "
            f"--hostname {shlex.quote(settings.agent_hostname)}"
        )
        try:
            handle = await state["sandbox"].start_detached(
                command,
                cwd=settings.repo_dir,
                env=settings.agent_env(),
            )
        except SandboxError as exc:
            raise AgentStartError(f"Failed to start OpenCode server: {exc}") from exc
        logger.info(
            "task_bootstrap event=agent_started task_id=%s process_id=%s",
            task_id,
            handle.process_id,
        )
        return {"agent_process_id": handle.process_id, "completed_steps": ["start_agent"]}

    async def wait_ready(state: BootstrapState) -> BootstrapState:
        client = _client(state)
        ready = await wait_until_ready(
            partial(client.is_ready, timeout_s=settings.ready_probe_timeout_s),
            max_attempts=settings.ready_max_attempts,
            interval_s=settings.ready_interval_s,
            label=state["task_id"],
        )
        if not ready:
            raise BootstrapTimeoutError("OpenCode server failed to start within timeout")
        return {"completed_steps": ["wait_ready"]}

    async def create_session(state: BootstrapState) -> BootstrapState:
        session_id = await _client(state).create_session(
            session_title(state["prompt"], settings.session_title_chars)
        )
        logger.info(
            "task_bootstrap event=session_created task_id=%s session_id=%s",
            state["task_id"],
            session_id,
        )
        return {
            "session_id": session_id,
            "started_at": datetime.now(tz=UTC),
            "completed_steps": ["create_session"],
        }

    async def dispatch_prompt(state: BootstrapState) -> BootstrapState:
        try:
            handle = await _client(state).dispatch_prompt(state["session_id"], state["prompt"])
        except SandboxError as exc:
            raise PromptDispatchError(f"Failed to send prompt: {exc}") from exc
        logger.info(
            "task_bootstrap event=prompt_dispatched task_id=%s session_id=%s",
            state["task_id"],
            state["session_id"],
        )
        return {"prompt_process_id": handle.process_id, "completed_steps": ["dispatch_prompt"]}

    graph = StateGraph(BootstrapState)

    graph.add_node("acquire", acquire)
    graph.add_node("clone", clone)
    graph.add_node("start_agent", start_agent)
    graph.add_node("wait_ready", wait_ready)
    graph.add_node("create_session", create_session)
    graph.add_node("dispatch_prompt", dispatch_prompt)

    graph.set_entry_point("acquire")
    graph.add_edge("acquire", "clone")
    graph.add_edge("clone", "start_agent")
    graph.add_edge("start_agent", "wait_ready")
    graph.add_edge("wait_ready", "create_session")
    graph.add_edge("create_session", "dispatch_prompt")
    graph.add_edge("dispatch_prompt", END)

    return graph.compile()


class TaskBootstrapper:
    """Create tasks by running the bootstrap graph against a sandbox provider."""

    def __init__(self, *, provider: SandboxProvider, settings: Settings) -> None:
        self.provider = provider
        self.settings = settings
        self.graph = build_bootstrap_graph(provider=provider, settings=settings)

    async def create_task(self, repo_url: str, branch: str, prompt: str) -> Task:
        task_id = generate_task_id()
        created_at = datetime.now(tz=UTC)
        logger.info(
            "task_bootstrap event=start task_id=%s repo_url=%s branch=%s",
            task_id,
            repo_url,
            branch,
        )
        try:
            result: BootstrapState = await self.graph.ainvoke(
                {
                    "task_id": task_id,
                    "repo_url": repo_url,
                    "branch": branch,
                    "prompt": prompt,
                    "completed_steps": [],
                }
            )
        except (BootstrapError, SandboxError) as exc:
            logger.warning("task_bootstrap event=failed task_id=%s error=%s", task_id, exc)
            if self.settings.cleanup_on_failure:
                await self._cleanup(task_id)
            if isinstance(exc, BootstrapError):
                raise
            raise BootstrapError(str(exc)) from exc

        logger.info(
            "task_bootstrap event=completed task_id=%s session_id=%s steps=%s",
            task_id,
            result["session_id"],
            ",".join(result.get("completed_steps", [])),
        )
        return Task(
            id=task_id,
            status="running",
            repo_url=repo_url,
            branch=branch,
            prompt=prompt,
            session_id=result["session_id"],
            created_at=created_at,
            started_at=result.get("started_at"),
        )

    async def _cleanup(self, task_id: str) -> None:
        try:
            await self.provider.release(task_id)
        except SandboxError as exc:
            logger.warning("task_bootstrap event=cleanup_failed task_id=%s error=%s", task_id, exc)
            return
        logger.info("task_bootstrap event=cleaned_up task_id=%s", task_id)
