import json

import pytest

from sandbox_orchestrator.cli import SseMessage, build_parser, follow_events, parse_sse, task_url


def _frame(event_type: str, derived_status: str, complete: bool, **properties) -> str:
    payload = {
        "event": {"type": event_type, "properties": properties},
        "derivedStatus": derived_status,
        "isComplete": complete,
    }
    return f"data: {json.dumps(payload)}"


def test_parse_sse_groups_lines_into_messages() -> None:
    lines = [
        ": keep-alive",
        "data: one",
        "",
        "event: disconnect",
        'data: {"error": "gone"}',
        "",
        "data: trailing",
    ]

    assert list(parse_sse(lines)) == [
        SseMessage(event="message", data="one"),
        SseMessage(event="disconnect", data='{"error": "gone"}'),
        SseMessage(event="message", data="trailing"),
    ]


def test_follow_events_stops_at_completion() -> None:
    lines = [
        _frame("session.status", "busy", False, sessionId="ses_1", status={"type": "busy"}),
        "",
        "data: not-json",
        "",
        _frame("session.idle", "completed", True, sessionId="ses_1"),
        "",
        _frame("server.connected", "completed", True),
        "",
    ]
    seen = []
    output = []

    complete = follow_events(parse_sse(lines), seen, output.append)

    assert complete is True
    assert [event.type for event in seen] == ["session.status", "session.idle"]
    assert output == ["[busy] session.status", "[completed] session.idle"]


def test_follow_events_reports_disconnect() -> None:
    output = []

    complete = follow_events(
        [SseMessage(event="disconnect", data='{"error": "Connection lost"}')],
        [],
        output.append,
    )

    assert complete is False
    assert output == ['disconnected: {"error": "Connection lost"}']


def test_task_url_escapes_and_skips_empty_query() -> None:
    assert task_url("http://host:8000/", "task 1", "/abort", sessionId="ses/1") == (
        "http://host:8000/tasks/task%201/abort?sessionId=ses%2F1"
    )
    assert task_url("http://host:8000", "task-1", "/events", sessionId=None) == (
        "http://host:8000/tasks/task-1/events"
    )


def test_parser_accepts_watch_options() -> None:
    args = build_parser().parse_args(
        ["--base-url", "http://api", "watch", "task-1", "--session-id", "ses_1", "--reconnect", "2"]
    )

    assert args.command == "watch"
    assert args.base_url == "http://api"
    assert args.task_id == "task-1"
    assert args.session_id == "ses_1"
    assert args.reconnect == 2


def test_watch_requires_session_id(capsys) -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["watch", "task-1"])

    assert "--session-id" in capsys.readouterr().err


def test_follow_events_skips_non_object_payloads() -> None:
    lines = [
        'data: {"event": 5, "derivedStatus": "busy", "isComplete": false}',
        "",
        'data: {"event": ["session.idle"]}',
        "",
        "data: [1, 2]",
        "",
        'data: "plain string"',
        "",
        _frame("session.idle", "completed", True, sessionId="ses_1"),
        "",
    ]
    seen = []
    output = []

    complete = follow_events(parse_sse(lines), seen, output.append)

    assert complete is True
    assert [event.type for event in seen] == ["session.idle"]
    assert output == ["[completed] session.idle"]
