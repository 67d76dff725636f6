"""Core type definitions for the conversation engine.

Messages, tool-call intents and model responses are frozen dataclasses: the
engine appends them to the transcript and never mutates them afterwards.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    "MessageRole",
    "Message",
    "ToolCallIntent",
    "ModelResponse",
    "ChatEvent",
    "EventKind",
    "EventSink",
    "TurnOutput",
    "fallback_call_id",
]


def _utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def fallback_call_id(index: int) -> str:
    """Id for a tool call the server sent without one; unique per reply."""
    return f"call_{index}_{uuid.uuid4().hex[:8]}"


# -----------------------------------------------------------------------------
# Tool Call Intent
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCallIntent:
    """A model-emitted request to invoke a named function.

    Attributes:
        id: Correlation token assigned by the model API.
        name: Qualified function name (built-in or ``<provider>_<tool>``).
        arguments_json: Raw JSON argument text as received.
        index: Slot index within the assistant message.
    """

    id: str
    name: str
    arguments_json: str = ""
    index: int = 0

    def to_wire(self) -> dict[str, Any]:
        """Serialize into the ``tool_calls[]`` entry format of the chat API."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json or "{}"},
        }

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any], index: int = 0) -> ToolCallIntent:
        function = payload.get("function") or {}
        arguments = function.get("arguments")
        if arguments is not None and not isinstance(arguments, str):
            # Some OpenAI-compatible servers send arguments as an object.
            arguments = json.dumps(arguments, ensure_ascii=False)
        slot = int(payload.get("index", index) or index)
        return cls(
            id=str(payload.get("id") or "") or fallback_call_id(slot),
            name=str(function.get("name") or ""),
            arguments_json=arguments or "",
            index=slot,
        )


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable transcript entry.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        timestamp: When the message was created.
        tool_call_id: Set on ``tool`` messages; the id of the call answered.
        tool_calls: Set on ``assistant`` messages that requested tools.
        name: Optional tool name on ``tool`` messages.
    """

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCallIntent, ...] | None = None
    name: str | None = None

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to the chat-completions wire format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_wire() for call in self.tool_calls]
        return payload  # type: ignore[return-value]

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Sequence[ToolCallIntent] | None = None) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: str | None = None) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)


# -----------------------------------------------------------------------------
# Model Response
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ModelResponse:
    """One model reply: plain text, tool intents, or both."""

    text: str
    tool_calls: tuple[ToolCallIntent, ...] = ()
    finish_reason: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def to_message(self) -> Message:
        return Message.assistant(self.text, tool_calls=self.tool_calls or None)


# -----------------------------------------------------------------------------
# Sink Events
# -----------------------------------------------------------------------------

EventKind = Literal["turn_start", "content", "tool_progress", "turn_end", "error"]


@dataclass(slots=True, frozen=True)
class ChatEvent:
    """Notification delivered to the caller-facing sink.

    ``turn_end`` and ``error`` are terminal; exactly one of them is emitted
    per turn.
    """

    kind: EventKind
    content: str = ""
    tool_names: tuple[str, ...] = ()
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in ("turn_end", "error")

    @classmethod
    def turn_start(cls) -> ChatEvent:
        return cls(kind="turn_start")

    @classmethod
    def delta(cls, content: str) -> ChatEvent:
        return cls(kind="content", content=content)

    @classmethod
    def tool_progress(cls, names: Sequence[str]) -> ChatEvent:
        joined = ", ".join(names)
        return cls(kind="tool_progress", content=f"Running tools: {joined}", tool_names=tuple(names))

    @classmethod
    def turn_end(cls, content: str = "") -> ChatEvent:
        return cls(kind="turn_end", content=content)

    @classmethod
    def failure(cls, message: str) -> ChatEvent:
        return cls(kind="error", error=message)


EventSink = Callable[[ChatEvent], None]


# -----------------------------------------------------------------------------
# Turn Output
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TurnOutput:
    """Result of one turn through the engine."""

    response: str
    success: bool = True
    error: str | None = None
    cancelled: bool = False
    iteration_count: int = 0
    tool_call_count: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(
        cls,
        error: str,
        *,
        cancelled: bool = False,
        iteration_count: int = 0,
        tool_call_count: int = 0,
    ) -> TurnOutput:
        return cls(
            response="",
            success=False,
            error=error,
            cancelled=cancelled,
            iteration_count=iteration_count,
            tool_call_count=tool_call_count,
        )
