"""Conversation engine and the pieces it wires together."""

# Core types
from .types import (
    ChatEvent,
    EventKind,
    EventSink,
    Message,
    MessageRole,
    ModelResponse,
    ToolCallIntent,
    TurnOutput,
)

# Tool execution
from .tool_execution import (
    ToolDispatcher,
    ToolExecutionResult,
    execute_tool_call,
    execute_tools,
    parse_tool_arguments,
)

# Engine
from .cancellation import CancellationController
from .engine import ConversationEngine, ModelClient, build_messages

__all__ = [
    # types.py
    "ChatEvent",
    "EventKind",
    "EventSink",
    "Message",
    "MessageRole",
    "ModelResponse",
    "ToolCallIntent",
    "TurnOutput",
    # tool_execution.py
    "ToolDispatcher",
    "ToolExecutionResult",
    "execute_tool_call",
    "execute_tools",
    "parse_tool_arguments",
    # engine
    "CancellationController",
    "ConversationEngine",
    "ModelClient",
    "build_messages",
]
