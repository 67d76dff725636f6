"""Catalog of built-in tools.

The catalog owns every in-process tool: descriptor lookup for the request
payload and exact-name execution for the resolver.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ....errors import DuplicateToolError, ToolExecutionError, UnknownToolError
from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, ToolSpec

__all__ = ["ToolCatalog", "ToolRegistration"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool."""

    name: str
    tool: Tool
    spec: ToolSpec
    enabled: bool = True


class ToolCatalog:
    """Registry of built-in tools in registration order.

    Example:
        catalog = ToolCatalog()
        catalog.register_function(
            ToolSpec(name="getProjectPath", description="Return the project root"),
            lambda args: "/work/project",
        )
        descriptors = catalog.list_descriptors(["getProjectPath"])
        result = await catalog.execute("getProjectPath", {})
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(self, tool: Tool, *, enabled: bool = True, allow_override: bool = False) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        name = tool.name
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)
        registration = ToolRegistration(name=name, tool=tool, spec=tool.spec, enabled=enabled)
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
    ) -> ToolRegistration:
        return self.register(
            SimpleTool(spec=spec, handler=handler),
            enabled=enabled,
            allow_override=allow_override,
        )

    def unregister(self, name: str) -> bool:
        if self._tools.pop(name, None) is None:
            return False
        LOGGER.debug("Unregistered tool: %s", name)
        return True

    def get(self, name: str) -> Tool | None:
        registration = self._tools.get(name)
        return registration.tool if registration is not None else None

    def has(self, name: str) -> bool:
        return name in self._tools

    def is_enabled(self, name: str, enabled_names: Iterable[str] | None = None) -> bool:
        """True when ``name`` is registered, switched on and passes the allow-list."""
        registration = self._tools.get(name)
        if registration is None or not registration.enabled:
            return False
        allowed = set(enabled_names or ())
        return not allowed or name in allowed

    def enable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = True
        return True

    def disable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = False
        return True

    def list_names(self) -> list[str]:
        return list(self._tools)

    def list_descriptors(self, enabled_names: Iterable[str] | None = None) -> list[ToolSpec]:
        """Return descriptors in registration order.

        A non-empty ``enabled_names`` keeps only the named tools; an empty or
        absent allow-list keeps every enabled tool.
        """
        return [
            registration.spec
            for registration in self._tools.values()
            if self.is_enabled(registration.name, enabled_names)
        ]

    async def execute(self, name: str, arguments: Mapping[str, Any]) -> Any:
        """Run the tool registered under exactly ``name``.

        Raises:
            UnknownToolError: If no tool has that name.
            ToolExecutionError: If the handler fails.
        """
        registration = self._tools.get(name)
        if registration is None:
            raise UnknownToolError(name)
        try:
            return await registration.tool.execute(arguments)
        except ToolExecutionError:
            raise
        except Exception as exc:
            LOGGER.debug("Tool %s raised %s", name, exc, exc_info=True)
            raise ToolExecutionError(str(exc) or type(exc).__name__, tool_name=name, cause=exc) from exc

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
