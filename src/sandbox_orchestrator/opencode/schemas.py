"""Pydantic schemas for the agent server's session API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class CreateSessionRequest(BaseModel):
    title: str | None = None


class SessionResponse(BaseModel):
    id: str


class ErrorEnvelope(BaseModel):
    error: str | None = None
    message: str | None = None

    def detail(self) -> str | None:
        return self.error or self.message


class TextPromptPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class PromptRequest(BaseModel):
    parts: list[TextPromptPart] = Field(default_factory=list)
