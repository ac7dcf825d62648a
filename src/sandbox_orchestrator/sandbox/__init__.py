"""Execution context providers."""

from sandbox_orchestrator.sandbox.base import (
    DetachedProcess,
    ExecResult,
    Sandbox,
    SandboxError,
    SandboxProvider,
)
from sandbox_orchestrator.sandbox.docker import DockerSandbox, DockerSandboxProvider
from sandbox_orchestrator.sandbox.memory import ScriptedSandbox, ScriptedSandboxProvider

__all__ = [
    "DetachedProcess",
    "DockerSandbox",
    "DockerSandboxProvider",
    "ExecResult",
    "Sandbox",
    "SandboxError",
    "SandboxProvider",
    "ScriptedSandbox",
    "ScriptedSandboxProvider",
]
