"""Tool descriptors, handlers and qualified names.

Built-in tools and provider tools share one descriptor type. Provider tools
reach the model under a ``<provider>_<tool>`` wire name; inside the process
the pair is carried as a :class:`QualifiedName` and only joined at the wire.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

from openai.types.chat import ChatCompletionToolParam

__all__ = [
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "SimpleTool",
    "ToolSource",
    "QualifiedName",
    "WIRE_SEPARATOR",
]

WIRE_SEPARATOR = "_"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Descriptor advertised to the model.

    Attributes:
        name: Tool name (unqualified for provider tools until merged).
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's parameters.
        is_write: Whether the tool mutates the workspace.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)
    is_write: bool = False

    def to_openai_tool(self) -> ChatCompletionToolParam:
        """Convert to the chat-completions ``tools[]`` entry."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters) if self.parameters else {
                    "type": "object",
                    "properties": {},
                },
            },
        }

    def qualified(self, provider: str) -> ToolSpec:
        """Return a copy named ``<provider>_<name>``."""
        return replace(self, name=QualifiedName.for_provider(provider, self.name).wire_name)


# -----------------------------------------------------------------------------
# Qualified Names
# -----------------------------------------------------------------------------


class ToolSource(str, Enum):
    BUILTIN = "builtin"
    PROVIDER = "provider"


@dataclass(slots=True, frozen=True)
class QualifiedName:
    """Tagged union over built-in and provider tool identities."""

    source: ToolSource
    tool: str
    provider: str | None = None

    @classmethod
    def builtin(cls, tool: str) -> QualifiedName:
        return cls(source=ToolSource.BUILTIN, tool=tool)

    @classmethod
    def for_provider(cls, provider: str, tool: str) -> QualifiedName:
        return cls(source=ToolSource.PROVIDER, tool=tool, provider=provider)

    @classmethod
    def split_wire(cls, wire_name: str) -> QualifiedName | None:
        """Split on the first separator; ``None`` when there is nothing to split."""
        provider, sep, tool = wire_name.partition(WIRE_SEPARATOR)
        if not sep or not provider or not tool:
            return None
        return cls.for_provider(provider, tool)

    @property
    def is_builtin(self) -> bool:
        return self.source is ToolSource.BUILTIN

    @property
    def wire_name(self) -> str:
        if self.source is ToolSource.BUILTIN:
            return self.tool
        return f"{self.provider}{WIRE_SEPARATOR}{self.tool}"

    def __str__(self) -> str:
        return self.wire_name


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

ToolHandler = Callable[[Mapping[str, Any]], Any]
AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


@runtime_checkable
class Tool(Protocol):
    """Protocol for built-in tool implementations."""

    @property
    def name(self) -> str:
        ...

    @property
    def spec(self) -> ToolSpec:
        ...

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        ...


@dataclass
class SimpleTool:
    """Tool implementation wrapping a sync or async callable.

    Example:
        tool = SimpleTool(
            spec=ToolSpec(name="getProjectPath", description="Project root"),
            handler=lambda args: str(host.project_root()),
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        result = self.handler(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result
