"""Live event feed: unwrap transport framing, normalize, and filter by session.

Each raw chunk coming out of the sandbox stream is a JSON envelope
``{"type": "stdout", "data": "data: {...}", "timestamp": "..."}``. The inner ``data``
line is one server-sent-events frame from the agent. Any chunk that fails to parse at
any layer is dropped (partial lines are normal at stream boundaries) and logged at
debug level only.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterable, AsyncIterator

from pydantic import BaseModel, ValidationError

from sandbox_orchestrator.config.settings import Settings
from sandbox_orchestrator.errors import TransportDisconnect
from sandbox_orchestrator.events.models import NormalizedEvent
from sandbox_orchestrator.opencode.client import OpenCodeClient
from sandbox_orchestrator.sandbox.base import SandboxError, SandboxProvider

logger = logging.getLogger(__name__)

FRAME_PREFIX = "data: "


class StreamEnvelope(BaseModel):
    type: str
    data: str | None = None
    timestamp: str | None = None


def parse_envelope(chunk: str) -> StreamEnvelope | None:
    envelope = StreamEnvelope.model_validate_json(chunk)
    if envelope.type != "stdout" or not envelope.data:
        return None
    return envelope


def unframe(line: str) -> str | None:
    frame = line.strip()
    if not frame.startswith(FRAME_PREFIX):
        return None
    payload = frame[len(FRAME_PREFIX) :]
    return payload or None


def normalize_chunk(chunk: str) -> NormalizedEvent | None:
    """Turn one raw transport chunk into a ``NormalizedEvent``, or None to drop it."""
    try:
        envelope = parse_envelope(chunk)
        if envelope is None or envelope.data is None:
            return None
        payload = unframe(envelope.data)
        if payload is None:
            return None
        return NormalizedEvent.from_native(json.loads(payload))
    except (ValidationError, ValueError) as exc:
        # json.JSONDecodeError is a ValueError.
        if chunk.strip():
            logger.debug("event_stream event=dropped reason=%s chunk=%s", exc, chunk[:200])
        return None


def should_deliver(event: NormalizedEvent, session_id: str | None) -> bool:
    """Deliver unscoped events and events scoped to ``session_id``."""
    if session_id is None:
        return True
    resolved = event.session_id
    return not resolved or resolved == session_id


async def filter_events(
    chunks: AsyncIterable[str],
    session_id: str | None,
) -> AsyncIterator[NormalizedEvent]:
    async for chunk in chunks:
        event = normalize_chunk(chunk)
        if event is None or not should_deliver(event, session_id):
            continue
        yield event


class EventStreamAdapter:
    """Open one live subscription per call against a task's agent event endpoint."""

    def __init__(self, *, provider: SandboxProvider, settings: Settings) -> None:
        self.provider = provider
        self.settings = settings

    async def subscribe(
        self,
        task_id: str,
        session_id: str | None = None,
    ) -> AsyncGenerator[NormalizedEvent, None]:
        try:
            sandbox = await self.provider.acquire(task_id, create=False)
        except SandboxError as exc:
            raise TransportDisconnect(f"Event stream unavailable: {exc}") from exc

        client = OpenCodeClient(sandbox, base_url=self.settings.agent_base_url())
        stream = sandbox.open_stream(client.event_stream_command())
        logger.info(
            "event_stream event=subscribed task_id=%s session_id=%s",
            task_id,
            session_id,
        )
        delivered = 0
        try:
            async for event in filter_events(stream, session_id):
                delivered += 1
                yield event
        except SandboxError as exc:
            logger.warning(
                "event_stream event=disconnected task_id=%s delivered=%d reason=%s",
                task_id,
                delivered,
                exc,
            )
            raise TransportDisconnect(f"Connection lost: {exc}") from exc
        finally:
            await stream.aclose()
            logger.info(
                "event_stream event=closed task_id=%s delivered=%d",
                task_id,
                delivered,
            )
