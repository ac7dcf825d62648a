"""Scripted in-memory execution contexts for tests only."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sandbox_orchestrator.sandbox.base import DetachedProcess, ExecResult, SandboxError


class ScriptedSandbox:
    """Answer commands from a list of ``(fragment, result)`` rules and record every call."""

    def __init__(
        self,
        key: str,
        *,
        rules: list[tuple[str, ExecResult]] | None = None,
        stream_chunks: list[str] | None = None,
        stream_error: Exception | None = None,
        failing_detached: tuple[str, ...] = (),
    ) -> None:
        self.key = key
        self.rules = list(rules or [])
        self.stream_chunks = list(stream_chunks or [])
        self.stream_error = stream_error
        self.failing_detached = failing_detached
        self.calls: list[tuple[str, str]] = []
        self.timeouts: list[float | None] = []
        self.detached_env: list[dict[str, str]] = []
        self.stream_closed = False

    def on(self, fragment: str, result: ExecResult) -> ScriptedSandbox:
        self.rules.append((fragment, result))
        return self

    def commands(self, kind: str) -> list[str]:
        return [command for call_kind, command in self.calls if call_kind == kind]

    async def run(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout_s: float | None = None,
    ) -> ExecResult:
        self.calls.append(("run", command))
        self.timeouts.append(timeout_s)
        for fragment, result in self.rules:
            if fragment in command:
                return result
        return ExecResult(stdout="", stderr="", exit_code=0)

    async def start_detached(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> DetachedProcess:
        self.calls.append(("start_detached", command))
        self.detached_env.append(dict(env or {}))
        if any(fragment in command for fragment in self.failing_detached):
            raise SandboxError(f"Failed to start process: {command}")
        return DetachedProcess(
            process_id=f"proc-{len(self.calls)}",
            command=command,
            env_keys=tuple(sorted(env or {})),
        )

    async def open_stream(self, command: str) -> AsyncGenerator[str, None]:
        self.calls.append(("open_stream", command))
        try:
            for chunk in self.stream_chunks:
                yield chunk
            if self.stream_error is not None:
                raise self.stream_error
        finally:
            self.stream_closed = True


class ScriptedSandboxProvider:
    """Hand out ``ScriptedSandbox`` instances built from shared defaults."""

    def __init__(
        self,
        *,
        rules: list[tuple[str, ExecResult]] | None = None,
        stream_chunks: list[str] | None = None,
        stream_error: Exception | None = None,
        failing_detached: tuple[str, ...] = (),
    ) -> None:
        self.rules = list(rules or [])
        self.stream_chunks = list(stream_chunks or [])
        self.stream_error = stream_error
        self.failing_detached = failing_detached
        self.sandboxes: dict[str, ScriptedSandbox] = {}
        self.acquired: list[str] = []
        self.released: list[str] = []

    def add(self, sandbox: ScriptedSandbox) -> ScriptedSandbox:
        self.sandboxes[sandbox.key] = sandbox
        return sandbox

    async def acquire(self, key: str, *, create: bool = True) -> ScriptedSandbox:
        self.acquired.append(key)
        sandbox = self.sandboxes.get(key)
        if sandbox is None:
            if not create:
                raise SandboxError(f"No execution context for task {key}")
            sandbox = self.add(
                ScriptedSandbox(
                    key,
                    rules=self.rules,
                    stream_chunks=self.stream_chunks,
                    stream_error=self.stream_error,
                    failing_detached=self.failing_detached,
                )
            )
        return sandbox

    async def release(self, key: str) -> None:
        self.released.append(key)
        self.sandboxes.pop(key, None)

    def only(self) -> ScriptedSandbox:
        if len(self.sandboxes) != 1:
            raise AssertionError(f"Expected one sandbox, found {len(self.sandboxes)}")
        return next(iter(self.sandboxes.values()))
