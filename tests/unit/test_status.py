from sandbox_orchestrator.events.models import NormalizedEvent
from sandbox_orchestrator.events.status import StatusSnapshot, derive_status


def _event(event_type: str, **properties) -> NormalizedEvent:
    return NormalizedEvent.from_native({"type": event_type, "properties": properties})


def _status(kind: str) -> NormalizedEvent:
    return _event("session.status", sessionID="s1", status={"type": kind})


def test_empty_sequence_is_unknown() -> None:
    assert derive_status([]) == StatusSnapshot(status="unknown", is_complete=False)


def test_busy_then_idle_event_completes() -> None:
    snapshot = derive_status([_status("busy"), _event("session.idle", sessionID="s1")])

    assert snapshot.status == "completed"
    assert snapshot.is_complete is True


def test_completion_is_sticky_across_later_events() -> None:
    events = [
        _status("busy"),
        _event("session.idle", sessionID="s1"),
        _status("busy"),
        _event("message.part.updated", delta="late"),
    ]

    snapshot = derive_status(events)

    assert snapshot.status == "busy"
    assert snapshot.is_complete is True


def test_session_status_idle_is_not_completion() -> None:
    snapshot = derive_status([_status("busy"), _status("idle")])

    assert snapshot == StatusSnapshot(status="idle", is_complete=False)


def test_error_event_completes_with_error() -> None:
    snapshot = derive_status([_status("busy"), _event("error", error={"message": "boom"})])

    assert snapshot == StatusSnapshot(status="error", is_complete=True)


def test_unrelated_events_leave_status_unknown() -> None:
    snapshot = derive_status([_event("server.connected"), _status("retrying")])

    assert snapshot == StatusSnapshot()


def test_derive_status_is_deterministic() -> None:
    events = [_status("busy"), _event("error"), _status("idle")]

    assert derive_status(events) == derive_status(list(events))
    assert derive_status(events) == StatusSnapshot(status="idle", is_complete=True)
