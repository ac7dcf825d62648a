"""Command-line entry point: run the API server or drive a running one over HTTP."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any
from urllib import error, parse, request

import uvicorn

from sandbox_orchestrator.config.settings import get_settings
from sandbox_orchestrator.events.models import NormalizedEvent
from sandbox_orchestrator.events.status import derive_status
from sandbox_orchestrator.events.transcript import assistant_text, tool_usage

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """The orchestrator API could not be reached or answered with an error."""


@dataclass(frozen=True)
class SseMessage:
    event: str
    data: str


def parse_sse(lines: Iterable[str]) -> Iterator[SseMessage]:
    """Group raw server-sent-events lines into messages; a blank line ends a message."""
    event = "message"
    data: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                yield SseMessage(event=event, data="\n".join(data))
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield SseMessage(event=event, data="\n".join(data))


def task_url(base_url: str, task_id: str, suffix: str = "", **query: str | None) -> str:
    url = f"{base_url.rstrip('/')}/tasks/{parse.quote(task_id, safe='')}{suffix}"
    params = {key: value for key, value in query.items() if value}
    if params:
        url = f"{url}?{parse.urlencode(params)}"
    return url


def request_json(
    method: str,
    url: str,
    *,
    timeout_s: float,
    body: dict[str, Any] | None = None,
) -> dict[str, Any]:
    req = request.Request(
        url=url,
        data=json.dumps(body).encode("utf-8") if body is not None else None,
        method=method,
        headers={"Content-Type": "application/json"},
    )
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        message = exc.read().decode("utf-8", errors="replace")
        raise ApiError(f"{method} {url} failed with status {exc.code}: {message[:400]}") from exc
    except error.URLError as exc:
        raise ApiError(f"{method} {url} failed: {exc.reason}") from exc

    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ApiError(f"{method} {url} returned non-JSON response") from exc


def follow_events(
    messages: Iterable[SseMessage],
    seen: list[NormalizedEvent],
    out: Callable[[str], None],
) -> bool:
    """Print each delivered event; return True once the server reports completion."""
    for message in messages:
        if message.event == "disconnect":
            out(f"disconnected: {message.data}")
            return False
        try:
            payload = json.loads(message.data)
        except ValueError:
            payload = None
        wire = payload.get("event") if isinstance(payload, dict) else None
        if not isinstance(wire, dict):
            logger.debug("watch event=skipped data=%s", message.data[:200])
            continue
        try:
            event = NormalizedEvent.from_wire(wire)
        except ValueError:
            logger.debug("watch event=invalid data=%s", message.data[:200])
            continue
        seen.append(event)
        out(f"[{payload.get('derivedStatus', 'unknown')}] {event.type}")
        if payload.get("isComplete"):
            return True
    return False


def watch(
    base_url: str,
    task_id: str,
    *,
    session_id: str,
    reconnect: int = 0,
    out: Callable[[str], None] = print,
) -> int:
    url = task_url(base_url, task_id, "/events", sessionId=session_id)
    seen: list[NormalizedEvent] = []
    remaining = reconnect

    while True:
        req = request.Request(url=url, headers={"Accept": "text/event-stream"})
        try:
            with request.urlopen(req) as response:
                lines = (line.decode("utf-8", errors="replace") for line in response)
                complete = follow_events(parse_sse(lines), seen, out)
        except OSError as exc:
            out(f"connection failed: {exc}")
            complete = False

        if complete:
            break
        if remaining <= 0:
            return 1
        remaining -= 1
        logger.info("watch event=reconnect task_id=%s remaining=%d", task_id, remaining)

    snapshot = derive_status(seen)
    out(f"status={snapshot.status}")
    text = assistant_text(seen)
    if text:
        out(text)
    for tool in tool_usage(seen):
        out(f"tool {tool.tool}")
    return 0 if snapshot.status == "completed" else 1


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="sandbox-orchestrator",
        description="Run coding-agent tasks in isolated sandboxes.",
    )
    parser.add_argument(
        "--base-url",
        default=settings.api_base_url,
        help=f"Orchestrator API base URL (default: {settings.api_base_url}).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default=settings.api_host)
    serve.add_argument("--port", type=int, default=settings.api_port)

    create = commands.add_parser("create", help="Start a new task.")
    create.add_argument("--repo-url", required=True)
    create.add_argument("--branch", default=settings.default_branch)
    create.add_argument("--prompt", required=True)

    watch_cmd = commands.add_parser("watch", help="Follow a task's live events.")
    watch_cmd.add_argument("task_id")
    watch_cmd.add_argument("--session-id", required=True)
    watch_cmd.add_argument(
        "--reconnect",
        type=int,
        default=0,
        help="How many times to resubscribe after a disconnect (default: 0).",
    )

    diff = commands.add_parser("diff", help="Print the working-tree diff of a task.")
    diff.add_argument("task_id")

    abort = commands.add_parser("abort", help="Abort a task's agent session.")
    abort.add_argument("task_id")
    abort.add_argument("--session-id", required=True)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.command == "serve":
        uvicorn.run(
            "sandbox_orchestrator.api.main:app",
            host=args.host,
            port=args.port,
            log_level=settings.log_level.lower(),
        )
        return 0

    timeout_s = settings.api_timeout_s
    try:
        if args.command == "create":
            payload = request_json(
                "POST",
                f"{args.base_url.rstrip('/')}/tasks",
                timeout_s=timeout_s,
                body={"repoUrl": args.repo_url, "branch": args.branch, "prompt": args.prompt},
            )
            print(json.dumps(payload["data"], indent=2))
            return 0
        if args.command == "watch":
            return watch(
                args.base_url,
                args.task_id,
                session_id=args.session_id,
                reconnect=args.reconnect,
            )
        if args.command == "diff":
            payload = request_json(
                "GET",
                task_url(args.base_url, args.task_id, "/diff"),
                timeout_s=timeout_s,
            )
            print(payload["data"]["diff"], end="")
            return 0
        if args.command == "abort":
            payload = request_json(
                "POST",
                task_url(args.base_url, args.task_id, "/abort", sessionId=args.session_id),
                timeout_s=timeout_s,
            )
            print(json.dumps(payload["data"]))
            return 0
    except ApiError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return 2


if __name__ == "__main__":
    sys.exit(main())
