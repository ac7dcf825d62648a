"""Execution context interfaces consumed by the orchestrator core."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Protocol


class SandboxError(RuntimeError):
    """Provider-level failure (container missing, docker unavailable, stream broken)."""


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a command run to completion inside a context."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class DetachedProcess:
    """Handle for a process launched without awaiting its completion.

    Carries no exit status or output; detached work is observed through the agent event feed.
    """

    process_id: str
    command: str
    env_keys: tuple[str, ...] = field(default_factory=tuple)


class Sandbox(Protocol):
    key: str

    async def run(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout_s: float | None = None,
    ) -> ExecResult: ...

    async def start_detached(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> DetachedProcess: ...

    def open_stream(self, command: str) -> AsyncGenerator[str, None]: ...


class SandboxProvider(Protocol):
    async def acquire(self, key: str, *, create: bool = True) -> Sandbox: ...

    async def release(self, key: str) -> None: ...
