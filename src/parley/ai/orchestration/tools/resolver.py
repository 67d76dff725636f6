"""Routes model-emitted tool names to built-in handlers or external providers."""

from __future__ import annotations

import logging
from typing import Any, Collection, Iterable, Mapping, Protocol, Sequence

from ....errors import (
    ProviderDisabledError,
    ToolDisabledError,
    ToolExecutionError,
    UnknownToolError,
)
from .registry import ToolCatalog
from .types import QualifiedName, ToolSpec

__all__ = ["ProviderGateway", "ToolResolver"]

LOGGER = logging.getLogger(__name__)


class ProviderGateway(Protocol):
    """The slice of the provider registry the resolver depends on."""

    def configured_names(self) -> list[str]:
        ...

    def is_connected(self, name: str) -> bool:
        ...

    async def list_tools(self, name: str) -> list[ToolSpec]:
        ...

    async def call_tool(self, name: str, tool_name: str, arguments: Mapping[str, Any]) -> Any:
        ...


class ToolResolver:
    """Resolves qualified names against the catalog first, then providers.

    Built-in names always win: a wire name that exactly matches a registered
    built-in never reaches a provider, even if it also splits into a
    ``<provider>_<tool>`` pair.
    """

    def __init__(self, catalog: ToolCatalog, providers: ProviderGateway | None = None) -> None:
        self._catalog = catalog
        self._providers = providers

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    def resolve(self, wire_name: str, *, selected_providers: Collection[str] = ()) -> QualifiedName:
        """Map a wire name to its identity or raise the matching tool error."""

        if self._catalog.has(wire_name):
            return QualifiedName.builtin(wire_name)
        qualified = QualifiedName.split_wire(wire_name)
        if qualified is None or self._providers is None:
            raise UnknownToolError(wire_name)
        provider = qualified.provider or ""
        if provider in selected_providers:
            return qualified
        if provider in self._providers.configured_names():
            raise ProviderDisabledError(provider, tool_name=wire_name)
        raise UnknownToolError(wire_name)

    async def dispatch(
        self,
        wire_name: str,
        arguments: Mapping[str, Any],
        *,
        selected_providers: Collection[str] = (),
        enabled_builtins: Iterable[str] | None = None,
    ) -> Any:
        """Execute the tool behind ``wire_name``; every failure is a ToolExecutionError."""

        qualified = self.resolve(wire_name, selected_providers=selected_providers)
        if qualified.is_builtin:
            if not self._catalog.is_enabled(qualified.tool, enabled_builtins):
                raise ToolDisabledError(qualified.tool)
            return await self._catalog.execute(qualified.tool, arguments)

        assert self._providers is not None
        provider = qualified.provider or ""
        try:
            return await self._providers.call_tool(provider, qualified.tool, arguments)
        except ToolExecutionError:
            raise
        except Exception as exc:
            raise ToolExecutionError(
                f"Provider '{provider}' failed to run '{qualified.tool}': {exc}",
                tool_name=wire_name,
                cause=exc,
            ) from exc

    async def collect_tools(
        self,
        *,
        selected_providers: Sequence[str] = (),
        enabled_builtins: Iterable[str] | None = None,
    ) -> list[ToolSpec]:
        """Merge built-in descriptors with live descriptors of selected providers.

        Provider descriptors are fetched on every call. A provider that fails
        to list contributes no tools.
        """

        merged = list(self._catalog.list_descriptors(enabled_builtins))
        if self._providers is None:
            return merged
        seen = {spec.name for spec in merged}
        for provider in selected_providers:
            if not self._providers.is_connected(provider):
                LOGGER.debug("Skipping tools of provider %s: not connected", provider)
                continue
            try:
                specs = await self._providers.list_tools(provider)
            except Exception as exc:
                LOGGER.warning("Failed to list tools of provider %s: %s", provider, exc)
                continue
            for spec in specs:
                qualified = spec.qualified(provider)
                if self._catalog.has(qualified.name):
                    LOGGER.warning(
                        "Provider tool %s is shadowed by the built-in tool of the same name",
                        qualified.name,
                    )
                    continue
                if qualified.name in seen:
                    continue
                seen.add(qualified.name)
                merged.append(qualified)
        return merged
