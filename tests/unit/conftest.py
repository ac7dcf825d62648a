from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pytest

from sandbox_orchestrator.config.settings import Settings
from sandbox_orchestrator.sandbox.base import ExecResult
from sandbox_orchestrator.sandbox.memory import ScriptedSandboxProvider

SESSION_CREATE = '{"title"'


@pytest.fixture
def settings() -> Settings:
    return Settings(ready_max_attempts=3, ready_interval_s=0.0)


@pytest.fixture
def provider() -> ScriptedSandboxProvider:
    """Context where clone, readiness and session creation all succeed."""
    return ScriptedSandboxProvider(
        rules=[(SESSION_CREATE, ExecResult(stdout='{"id": "ses_1"}', stderr="", exit_code=0))]
    )


@pytest.fixture
def stdout_chunk() -> Callable[[dict[str, Any]], str]:
    def _chunk(event: dict[str, Any]) -> str:
        return json.dumps(
            {
                "type": "stdout",
                "data": f"data: {json.dumps(event)}",
                "timestamp": "2025-01-01T00:00:00+00:00",
            }
        )

    return _chunk
