"""Agent event normalization, filtering and status derivation."""

from sandbox_orchestrator.events.adapter import EventStreamAdapter, normalize_chunk, should_deliver
from sandbox_orchestrator.events.models import EventProperties, MessagePart, NormalizedEvent
from sandbox_orchestrator.events.status import DerivedStatus, StatusSnapshot, derive_status
from sandbox_orchestrator.events.transcript import ToolUse, assistant_text, tool_usage

__all__ = [
    "DerivedStatus",
    "EventProperties",
    "EventStreamAdapter",
    "MessagePart",
    "NormalizedEvent",
    "StatusSnapshot",
    "ToolUse",
    "assistant_text",
    "derive_status",
    "normalize_chunk",
    "should_deliver",
    "tool_usage",
]
