"""Docker-backed execution contexts: one long-lived container per task key.

Every operation shells out to the docker CLI through ``asyncio.create_subprocess_exec``
so a slow command never blocks the event loop. Containers are found by name on each
``acquire``; no in-process registry of tasks is kept.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

from sandbox_orchestrator.config.settings import Settings
from sandbox_orchestrator.sandbox.base import DetachedProcess, ExecResult, SandboxError

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
STREAM_LINE_LIMIT = 4 * 1024 * 1024
TASK_LABEL = "sandbox-orchestrator.task_id"


class DockerSandbox:
    """Commands executed inside one running container."""

    def __init__(
        self,
        *,
        key: str,
        container_name: str,
        docker_binary: str = "docker",
        default_timeout_s: float = 120.0,
    ) -> None:
        self.key = key
        self.container_name = container_name
        self.docker_binary = docker_binary
        self.default_timeout_s = default_timeout_s

    async def run(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout_s: float | None = None,
    ) -> ExecResult:
        timeout = self.default_timeout_s if timeout_s is None else timeout_s
        proc = await _spawn(self.exec_args(command, cwd=cwd))
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning(
                "sandbox_exec event=timeout container=%s timeout_s=%.1f",
                self.container_name,
                timeout,
            )
            return ExecResult(
                stdout="",
                stderr=f"Command timed out after {timeout:.1f}s",
                exit_code=TIMEOUT_EXIT_CODE,
            )
        return ExecResult(
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            exit_code=proc.returncode if proc.returncode is not None else 0,
        )

    async def start_detached(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> DetachedProcess:
        # `docker exec -d` itself returns as soon as the process is spawned.
        proc = await _spawn(self.exec_args(command, cwd=cwd, env=env, detach=True))
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise SandboxError(
                f"Failed to start process in {self.container_name}: {_decode(stderr).strip()}"
            )
        handle = DetachedProcess(
            process_id=uuid.uuid4().hex[:12],
            command=command,
            env_keys=tuple(sorted(env or {})),
        )
        logger.info(
            "sandbox_exec event=detached container=%s process_id=%s",
            self.container_name,
            handle.process_id,
        )
        return handle

    async def open_stream(self, command: str) -> AsyncGenerator[str, None]:
        """Yield one JSON envelope per output line: ``{type, data, timestamp}``."""
        proc = await _spawn(self.exec_args(command), limit=STREAM_LINE_LIMIT)
        queue: asyncio.Queue[tuple[str, str] | None] = asyncio.Queue()
        readers = [
            asyncio.create_task(_pump(proc.stdout, "stdout", queue)),
            asyncio.create_task(_pump(proc.stderr, "stderr", queue)),
        ]
        finished = 0
        try:
            while finished < len(readers):
                item = await queue.get()
                if item is None:
                    finished += 1
                    continue
                stream_type, line = item
                yield json.dumps(
                    {
                        "type": stream_type,
                        "data": line,
                        "timestamp": datetime.now(tz=UTC).isoformat(),
                    }
                )
            returncode = await proc.wait()
            if returncode != 0:
                raise SandboxError(
                    f"Stream command in {self.container_name} exited with status {returncode}"
                )
        finally:
            for reader in readers:
                reader.cancel()
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
                logger.info("sandbox_stream event=closed container=%s", self.container_name)

    def exec_args(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        detach: bool = False,
    ) -> list[str]:
        args = [self.docker_binary, "exec"]
        if detach:
            args.append("-d")
        if cwd:
            args.extend(["-w", cwd])
        for name, value in (env or {}).items():
            args.extend(["-e", f"{name}={value}"])
        args.extend([self.container_name, "sh", "-lc", command])
        return args


class DockerSandboxProvider:
    """Create or look up task containers by name."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def container_name(self, key: str) -> str:
        return f"{self.settings.sandbox_name_prefix}{key}"

    async def acquire(self, key: str, *, create: bool = True) -> DockerSandbox:
        name = self.container_name(key)
        state = await self._container_state(name)
        if state is None:
            if not create:
                raise SandboxError(f"No execution context for task {key}")
            await self._create_container(name, key)
        elif state != "running":
            await self._docker("start", name)
        return DockerSandbox(
            key=key,
            container_name=name,
            docker_binary=self.settings.docker_binary,
            default_timeout_s=self.settings.command_timeout_s,
        )

    async def release(self, key: str) -> None:
        name = self.container_name(key)
        result = await self._docker("rm", "-f", name, check=False)
        logger.info(
            "sandbox_provider event=released container=%s exit_code=%d",
            name,
            result.exit_code,
        )

    async def _container_state(self, name: str) -> str | None:
        result = await self._docker(
            "inspect", "--format", "{{.State.Status}}", name, check=False
        )
        if not result.success:
            return None
        return result.stdout.strip() or None

    async def _create_container(self, name: str, key: str) -> None:
        result = await self._docker(
            "run",
            "-d",
            "--name",
            name,
            "--label",
            f"{TASK_LABEL}={key}",
            "--entrypoint",
            "tail",
            self.settings.sandbox_image,
            "-f",
            "/dev/null",
            check=False,
        )
        if result.success:
            logger.info("sandbox_provider event=created container=%s", name)
            return
        # Another request may have created the same container concurrently.
        if await self._container_state(name) == "running":
            return
        raise SandboxError(f"Failed to create container {name}: {result.stderr.strip()}")

    async def _docker(self, *args: str, check: bool = True) -> ExecResult:
        proc = await _spawn([self.settings.docker_binary, *args])
        stdout, stderr = await proc.communicate()
        result = ExecResult(
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            exit_code=proc.returncode if proc.returncode is not None else 0,
        )
        if check and not result.success:
            raise SandboxError(f"docker {args[0]} failed: {result.stderr.strip()}")
        return result


async def _spawn(args: list[str], *, limit: int | None = None) -> asyncio.subprocess.Process:
    kwargs = {"limit": limit} if limit is not None else {}
    try:
        return await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **kwargs,
        )
    except OSError as exc:
        raise SandboxError(f"Unable to run {args[0]}: {exc}") from exc


async def _pump(
    reader: asyncio.StreamReader | None,
    stream_type: str,
    queue: asyncio.Queue[tuple[str, str] | None],
) -> None:
    try:
        if reader is None:
            return
        while True:
            try:
                raw = await reader.readline()
            except ValueError:
                logger.debug("sandbox_stream event=line_too_long stream=%s", stream_type)
                continue
            if not raw:
                return
            queue.put_nowait((stream_type, _decode(raw).rstrip("\r\n")))
    finally:
        queue.put_nowait(None)


def _decode(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace")
