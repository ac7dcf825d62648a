"""Readable views over an event sequence: assistant text and tool calls."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sandbox_orchestrator.events.models import NormalizedEvent


@dataclass
class ToolUse:
    tool: str
    input: Any = None
    output: Any = None


def assistant_text(events: Iterable[NormalizedEvent]) -> str:
    chunks: list[str] = []
    for event in events:
        if event.type == "message.part.updated":
            delta = event.delta()
            if delta:
                chunks.append(delta)
        elif event.type == "message.part.delta":
            # Older agent builds send the text inside the part instead of a delta.
            part = event.part()
            if part is not None and part.type == "text" and part.text:
                chunks.append(part.text)
    return "".join(chunks)


def tool_usage(events: Iterable[NormalizedEvent]) -> list[ToolUse]:
    """Pair each ``tool.start`` with the next ``tool.end``."""
    tools: list[ToolUse] = []
    current: ToolUse | None = None
    for event in events:
        part = event.part()
        if event.type == "tool.start" and part is not None and part.tool:
            current = ToolUse(tool=part.tool, input=part.input)
        elif event.type == "tool.end" and current is not None:
            current.output = part.output if part is not None else None
            tools.append(current)
            current = None
    return tools
