"""Normalized agent events.

Known event types get a typed ``properties`` model; anything else (or a known type whose
payload does not fit) falls back to ``EventProperties``, an open string-keyed map that
keeps every native field.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, ValidationError


class OpenModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class MessagePart(OpenModel):
    """Text, tool or reasoning payload attached to message/tool events."""

    id: str | None = None
    type: str | None = None
    text: str | None = None
    tool: str | None = None
    input: Any = None
    output: Any = None
    session_id: str | None = Field(default=None, alias="sessionID")
    message_id: str | None = Field(default=None, alias="messageID")


class SessionStatusInfo(OpenModel):
    type: str


class FileDiff(OpenModel):
    file: str
    before: str | None = None
    after: str | None = None
    additions: int = 0
    deletions: int = 0


class EventProperties(OpenModel):
    session_id: str | None = Field(default=None, alias="sessionId")
    message_id: str | None = Field(default=None, alias="messageId")


class SessionStatusProperties(EventProperties):
    status: SessionStatusInfo


class MessagePartProperties(EventProperties):
    part: MessagePart | None = None
    delta: str | None = None


class ToolProperties(EventProperties):
    part: MessagePart | None = None


class SessionDiffProperties(EventProperties):
    diff: list[FileDiff] = Field(default_factory=list)


class ErrorProperties(EventProperties):
    error: Any = None


PROPERTIES_BY_TYPE: dict[str, type[EventProperties]] = {
    "session.status": SessionStatusProperties,
    "message.part.updated": MessagePartProperties,
    "message.part.delta": MessagePartProperties,
    "tool.start": ToolProperties,
    "tool.end": ToolProperties,
    "session.diff": SessionDiffProperties,
    "error": ErrorProperties,
}


class NormalizedEvent(BaseModel):
    type: str
    properties: SerializeAsAny[EventProperties] = Field(default_factory=EventProperties)

    @classmethod
    def from_native(cls, payload: Any) -> NormalizedEvent:
        """Reshape a native ``{type, properties}`` agent event.

        ``sessionId``/``messageId`` are resolved from the native ``sessionID``/``messageID``
        fields, falling back to the nested ``part``; all native properties are kept.
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
            raise ValueError("agent event must be an object with a string 'type'")
        native = payload.get("properties") or {}
        if not isinstance(native, dict):
            raise ValueError("agent event 'properties' must be an object")

        part = native.get("part")
        nested = part if isinstance(part, dict) else {}
        data = dict(native)
        data["sessionId"] = (
            native.get("sessionID") or native.get("sessionId") or nested.get("sessionID")
        )
        data["messageId"] = (
            native.get("messageID") or native.get("messageId") or nested.get("messageID")
        )
        return cls(type=payload["type"], properties=_typed_properties(payload["type"], data))

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> NormalizedEvent:
        """Rebuild an event from its serialized form (``to_wire`` output)."""
        event_type = str(payload.get("type", ""))
        properties = payload.get("properties")
        data = properties if isinstance(properties, dict) else {}
        return cls(type=event_type, properties=_typed_properties(event_type, data))

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @property
    def session_id(self) -> str | None:
        return self.properties.session_id

    def status_type(self) -> str | None:
        if isinstance(self.properties, SessionStatusProperties):
            return self.properties.status.type
        return None

    def part(self) -> MessagePart | None:
        part = getattr(self.properties, "part", None)
        if isinstance(part, MessagePart):
            return part
        if isinstance(part, dict):
            try:
                return MessagePart.model_validate(part)
            except ValidationError:
                return None
        return None

    def delta(self) -> str | None:
        delta = getattr(self.properties, "delta", None)
        return delta if isinstance(delta, str) else None


def _typed_properties(event_type: str, data: dict[str, Any]) -> EventProperties:
    model = PROPERTIES_BY_TYPE.get(event_type, EventProperties)
    if model is not EventProperties:
        try:
            return model.model_validate(data)
        except ValidationError:
            pass
    return EventProperties.model_validate(data)
