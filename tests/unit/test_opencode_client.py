import asyncio

from sandbox_orchestrator.opencode.client import OpenCodeClient
from sandbox_orchestrator.sandbox.base import ExecResult
from sandbox_orchestrator.sandbox.memory import ScriptedSandbox


class StalledAgentSandbox(ScriptedSandbox):
    """Accepts the probe but never answers until the exec timeout fires."""

    async def run(self, command, *, cwd=None, timeout_s=None) -> ExecResult:
        self.calls.append(("run", command))
        self.timeouts.append(timeout_s)
        if timeout_s is None:
            await asyncio.Event().wait()
        await asyncio.sleep(0)
        return ExecResult(stdout="", stderr="Command timed out", exit_code=124)


def test_is_ready_bounds_each_probe() -> None:
    sandbox = StalledAgentSandbox("task-1")
    client = OpenCodeClient(sandbox, base_url="http://localhost:4096")

    async def _probe() -> bool:
        return await asyncio.wait_for(client.is_ready(timeout_s=0.5), timeout=5.0)

    assert asyncio.run(_probe()) is False
    assert sandbox.timeouts == [1.5]
    assert "--max-time 0.5 " in sandbox.commands("run")[0]


def test_is_ready_accepts_agent_response() -> None:
    sandbox = ScriptedSandbox("task-1").on("curl -sf", ExecResult("[]", "", 0))
    client = OpenCodeClient(sandbox, base_url="http://localhost:4096")

    assert asyncio.run(client.is_ready()) is True


def test_is_ready_treats_sentinel_as_not_ready() -> None:
    sandbox = ScriptedSandbox("task-1").on("curl -sf", ExecResult("not ready\n", "", 0))
    client = OpenCodeClient(sandbox, base_url="http://localhost:4096")

    assert asyncio.run(client.is_ready()) is False
