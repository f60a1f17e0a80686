"""Shared message, conversation and artifact types."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from hubchat.streaming import StreamableValue

Role = Literal["user", "assistant", "tool"]


def generate_id() -> str:
    return uuid.uuid4().hex[:16]


class ToolCall(BaseModel):
    """One capability call recorded on an assistant message."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: str = "{}"


class Message(BaseModel):
    """One entry of a conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Any = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    tool_name: str | None = None

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        return cls(role="assistant", content=content)

    def is_blank_assistant(self) -> bool:
        if self.role != "assistant" or self.tool_calls:
            return False
        if not self.content:
            return True
        return isinstance(self.content, str) and not self.content.strip()

    def to_openai(self) -> dict[str, Any]:
        """Render in the chat-completions message shape."""
        if self.role == "tool":
            content = self.content if isinstance(self.content, str) else json.dumps(self.content, ensure_ascii=False)
            return {"role": "tool", "tool_call_id": self.tool_call_id, "content": content}
        payload: dict[str, Any] = {"role": self.role, "content": self.content or None}
        if self.tool_calls:
            payload["tool_calls"] = [
                {"id": call.id, "type": "function", "function": {"name": call.name, "arguments": call.arguments}}
                for call in self.tool_calls
            ]
        elif payload["content"] is None:
            payload["content"] = ""
        return payload


class ConversationState(BaseModel):
    """Committed history of one conversation."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str = Field(default_factory=generate_id)
    messages: tuple[Message, ...] = ()


@dataclass(frozen=True)
class CallMetadata:
    """Identity of one capability call, passed to its handler."""

    name: str
    call_id: str


@dataclass(frozen=True)
class TextArtifact:
    stream: StreamableValue[str]
    kind: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class CapabilityArtifact:
    name: str
    payload: Any
    kind: Literal["capability"] = field(default="capability", init=False)


@dataclass(frozen=True)
class ErrorArtifact:
    message: str
    recoverable: bool
    partial_text: str = ""
    kind: Literal["error"] = field(default="error", init=False)

    @property
    def content(self) -> str:
        """Message shown to the user, including any text produced before the failure."""
        if self.partial_text.strip():
            return f"{self.partial_text}\n\n{self.message}"
        return self.message


Artifact: TypeAlias = TextArtifact | CapabilityArtifact | ErrorArtifact

ARTIFACT_TYPES = (TextArtifact, CapabilityArtifact, ErrorArtifact)
