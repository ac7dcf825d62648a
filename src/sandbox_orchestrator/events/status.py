"""Derive a task status purely from the observed event sequence."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from sandbox_orchestrator.events.models import NormalizedEvent

DerivedStatus = Literal["idle", "busy", "completed", "error", "unknown"]


@dataclass(frozen=True)
class StatusSnapshot:
    status: DerivedStatus = "unknown"
    is_complete: bool = False


def derive_status(events: Iterable[NormalizedEvent]) -> StatusSnapshot:
    """Fold events in order; later events override, completion is never reset."""
    status: DerivedStatus = "unknown"
    complete = False

    for event in events:
        if event.type == "session.status":
            status_type = event.status_type()
            if status_type == "busy":
                status = "busy"
            elif status_type == "idle":
                status = "idle"
        elif event.type == "session.idle":
            status = "completed"
            complete = True
        elif event.type == "error":
            status = "error"
            complete = True

    return StatusSnapshot(status=status, is_complete=complete)
