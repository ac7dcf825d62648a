import asyncio
import json

import pytest

from sandbox_orchestrator.errors import TransportDisconnect
from sandbox_orchestrator.events.adapter import EventStreamAdapter, normalize_chunk, should_deliver
from sandbox_orchestrator.events.models import MessagePartProperties, NormalizedEvent
from sandbox_orchestrator.sandbox.base import SandboxError
from sandbox_orchestrator.sandbox.memory import ScriptedSandbox, ScriptedSandboxProvider


def _busy(session_id: str) -> dict:
    return {
        "type": "session.status",
        "properties": {"sessionID": session_id, "status": {"type": "busy"}},
    }


def _idle(session_id: str) -> dict:
    return {"type": "session.idle", "properties": {"sessionID": session_id}}


def _collect(adapter: EventStreamAdapter, task_id: str, session_id: str | None = None):
    async def _run() -> list[NormalizedEvent]:
        return [event async for event in adapter.subscribe(task_id, session_id)]

    return asyncio.run(_run())


def test_normalize_resolves_session_id_from_native_field(stdout_chunk) -> None:
    event = normalize_chunk(stdout_chunk(_busy("s1")))

    assert event is not None
    assert event.session_id == "s1"
    assert event.status_type() == "busy"


def test_normalize_resolves_session_id_from_nested_part(stdout_chunk) -> None:
    event = normalize_chunk(
        stdout_chunk(
            {
                "type": "message.part.updated",
                "properties": {
                    "part": {"id": "p1", "type": "text", "sessionID": "s1", "messageID": "m1"},
                    "delta": "Hel",
                },
            }
        )
    )

    assert event is not None
    assert isinstance(event.properties, MessagePartProperties)
    assert event.session_id == "s1"
    assert event.properties.message_id == "m1"
    assert event.delta() == "Hel"


def test_unknown_event_types_keep_native_properties(stdout_chunk) -> None:
    event = normalize_chunk(
        stdout_chunk(
            {"type": "file.edited", "properties": {"file": "README.md", "sessionID": "s1"}}
        )
    )

    assert event is not None
    wire = event.to_wire()
    assert wire["type"] == "file.edited"
    assert wire["properties"]["file"] == "README.md"
    assert wire["properties"]["sessionId"] == "s1"


def test_known_type_with_unexpected_payload_falls_back(stdout_chunk) -> None:
    event = normalize_chunk(
        stdout_chunk({"type": "session.status", "properties": {"status": "weird"}})
    )

    assert event is not None
    assert event.status_type() is None
    assert event.to_wire()["properties"]["status"] == "weird"


@pytest.mark.parametrize(
    "chunk",
    [
        "not json at all",
        json.dumps({"type": "stdout", "data": "data: {broken"}),
        json.dumps({"type": "stdout", "data": "event: ping"}),
        json.dumps({"type": "stdout", "data": ""}),
        json.dumps({"type": "stdout", "data": "data: [1, 2]"}),
        json.dumps({"type": "stderr", "data": 'data: {"type": "session.idle"}'}),
        "",
    ],
)
def test_malformed_or_foreign_chunks_are_dropped(chunk: str) -> None:
    assert normalize_chunk(chunk) is None


def test_should_deliver_filters_foreign_sessions() -> None:
    scoped = NormalizedEvent.from_native(_idle("s1"))
    other = NormalizedEvent.from_native(_idle("s2"))
    unscoped = NormalizedEvent.from_native({"type": "server.connected", "properties": {}})

    assert should_deliver(scoped, "s1")
    assert not should_deliver(other, "s1")
    assert should_deliver(unscoped, "s1")
    assert should_deliver(other, None)


def test_subscribe_delivers_only_requested_session(settings, stdout_chunk) -> None:
    provider = ScriptedSandboxProvider()
    provider.add(
        ScriptedSandbox(
            "task-1",
            stream_chunks=[
                stdout_chunk({"type": "server.connected", "properties": {}}),
                stdout_chunk(_busy("s2")),
                "garbage",
                stdout_chunk(_busy("s1")),
                stdout_chunk(_idle("s1")),
            ],
        )
    )
    adapter = EventStreamAdapter(provider=provider, settings=settings)

    events = _collect(adapter, "task-1", "s1")

    assert [event.type for event in events] == [
        "server.connected",
        "session.status",
        "session.idle",
    ]
    assert all(event.session_id in (None, "s1") for event in events)
    sandbox = provider.only()
    assert sandbox.commands("open_stream") == [
        "curl -sN -H 'Accept: text/event-stream' http://localhost:4096/event"
    ]
    assert sandbox.stream_closed


def test_subscribe_without_session_delivers_everything(settings, stdout_chunk) -> None:
    provider = ScriptedSandboxProvider()
    provider.add(
        ScriptedSandbox(
            "task-1",
            stream_chunks=[
                stdout_chunk(_idle("s1")),
                stdout_chunk(_idle("s2")),
            ],
        )
    )

    events = _collect(EventStreamAdapter(provider=provider, settings=settings), "task-1")

    assert [event.session_id for event in events] == ["s1", "s2"]


def test_transport_failure_surfaces_as_disconnect(settings, stdout_chunk) -> None:
    provider = ScriptedSandboxProvider()
    sandbox = provider.add(
        ScriptedSandbox(
            "task-1",
            stream_chunks=[stdout_chunk({"type": "server.connected", "properties": {}})],
            stream_error=SandboxError("stream exited with status 7"),
        )
    )
    adapter = EventStreamAdapter(provider=provider, settings=settings)
    received: list[NormalizedEvent] = []

    async def _run() -> None:
        async for event in adapter.subscribe("task-1"):
            received.append(event)

    with pytest.raises(TransportDisconnect, match="Connection lost"):
        asyncio.run(_run())

    assert [event.type for event in received] == ["server.connected"]
    assert sandbox.stream_closed


def test_subscribe_to_missing_context_disconnects(settings) -> None:
    adapter = EventStreamAdapter(provider=ScriptedSandboxProvider(), settings=settings)

    with pytest.raises(TransportDisconnect, match="Event stream unavailable"):
        _collect(adapter, "task-missing")


def test_closing_subscription_closes_stream(settings, stdout_chunk) -> None:
    provider = ScriptedSandboxProvider()
    sandbox = provider.add(
        ScriptedSandbox(
            "task-1",
            stream_chunks=[
                stdout_chunk({"type": "server.connected", "properties": {}}),
                stdout_chunk({"type": "session.idle", "properties": {}}),
            ],
        )
    )
    adapter = EventStreamAdapter(provider=provider, settings=settings)

    async def _first_only() -> NormalizedEvent:
        subscription = adapter.subscribe("task-1")
        first = await anext(subscription)
        await subscription.aclose()
        return first

    first = asyncio.run(_first_only())

    assert first.type == "server.connected"
    assert sandbox.stream_closed
