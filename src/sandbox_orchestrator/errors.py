"""Error taxonomy for task bootstrap and event streaming."""

from __future__ import annotations

from typing import Any


class OrchestratorError(RuntimeError):
    """Base class for orchestrator failures."""


class BootstrapError(OrchestratorError):
    """A bootstrap step failed; the whole task creation is aborted."""


class CloneError(BootstrapError):
    """Repository could not be cloned (bad URL, missing branch, auth, network)."""


class AgentStartError(BootstrapError):
    """The agent server process could not be launched."""


class BootstrapTimeoutError(BootstrapError):
    """The agent server did not become ready within the poll budget."""


class SessionCreationError(BootstrapError):
    """The agent session could not be created."""


class UpstreamSessionError(SessionCreationError):
    """The agent answered session creation with a structured error envelope."""


class UnexpectedSessionResponseError(SessionCreationError):
    """The session response matched neither the expected nor the error schema."""

    def __init__(self, message: str, *, raw: Any) -> None:
        super().__init__(message)
        self.raw = raw


class PromptDispatchError(BootstrapError):
    """The detached prompt dispatch could not be launched."""


class TransportDisconnect(OrchestratorError):
    """The live event stream dropped; the subscriber may reconnect."""
