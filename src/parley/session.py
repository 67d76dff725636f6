"""Chat session: history, provider selection and the engine behind one conversation."""

from __future__ import annotations

import inspect
import logging
from pathlib import Path
from typing import Iterable

import httpx

from .ai.client import ChatClient
from .ai.config import GenerationConfig
from .ai.orchestration import ConversationEngine, EventSink, Message, ModelClient, TurnOutput
from .ai.orchestration.tools import ToolCatalog, ToolResolver
from .ai.tools import EditorHost, HeadlessEditorHost, register_builtin_tools
from .errors import ConfigurationError, ParleyError
from .services.provider_registry import ProviderRegistry
from .services.providers import ProviderConfig, parse_provider_configs
from .services.settings import Settings

__all__ = ["ChatSession"]

LOGGER = logging.getLogger(__name__)


class ChatSession:
    """Owns the transcript, the selected providers and the wiring between them.

    History lives in memory for the lifetime of the session.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        host: EditorHost | None = None,
        client: ModelClient | None = None,
        registry: ProviderRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._config = GenerationConfig.from_settings(settings)
        self._host = host or HeadlessEditorHost()
        self._client = client or ChatClient(self._config, transport=transport)
        self._registry = registry or ProviderRegistry(
            _provider_configs(settings), workspace_folder=self._workspace_folder()
        )
        self._catalog = ToolCatalog()
        register_builtin_tools(self._catalog, self._host)
        self._engine = ConversationEngine(
            self._client, ToolResolver(self._catalog, self._registry), config=self._config
        )
        self._history: list[Message] = []
        self._selected: list[str] = []
        self.set_selected_providers(settings.selected_mcp_servers)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def config(self) -> GenerationConfig:
        return self._config

    @property
    def history(self) -> tuple[Message, ...]:
        return tuple(self._history)

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def selected_providers(self) -> tuple[str, ...]:
        return tuple(self._selected)

    @property
    def busy(self) -> bool:
        return self._engine.busy

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------
    async def send_message(self, text: str, sink: EventSink) -> TurnOutput:
        return await self._engine.send_message(
            self._history, text, sink, selected_providers=tuple(self._selected)
        )

    def cancel(self) -> bool:
        return self._engine.cancel()

    def clear_history(self) -> None:
        if self.busy:
            raise RuntimeError("Cannot clear history while a turn is in progress")
        self._history.clear()
        LOGGER.info("Chat history cleared")

    def set_tools_enabled(self, enabled: bool) -> None:
        self._apply_config(self._config.with_overrides(enable_tools=bool(enabled)))
        LOGGER.info("Tool use %s", "enabled" if enabled else "disabled")

    def set_selected_providers(self, names: Iterable[str]) -> tuple[str, ...]:
        """Select the providers whose tools are offered; unknown names are dropped."""
        configured = set(self._registry.configured_names())
        selected: list[str] = []
        for name in names:
            if name not in configured:
                LOGGER.warning("Ignoring unknown MCP server %r in selection", name)
                continue
            if name not in selected:
                selected.append(name)
        self._selected = selected
        return tuple(selected)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------
    def list_providers(self) -> list[tuple[str, bool]]:
        return [(name, self._registry.is_connected(name)) for name in self._registry.configured_names()]

    async def connect_provider(self, name: str) -> None:
        await self._registry.connect(name)

    async def reconnect_provider(self, name: str) -> None:
        await self._registry.connect(name)

    async def disconnect_provider(self, name: str) -> bool:
        return await self._registry.disconnect(name)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def reload_settings(self, settings: Settings) -> None:
        """Take a new settings snapshot; a turn already running keeps its own."""
        self._settings = settings
        self._registry.update_configs(_provider_configs(settings))
        self._apply_config(GenerationConfig.from_settings(settings))
        self.set_selected_providers(self._selected)
        LOGGER.info("Settings reloaded (model=%s)", self._config.model)

    async def test_connection(self) -> bool:
        """Send a one-message buffered request; True when the endpoint answers."""
        config = self._config.with_overrides(enable_stream=False)
        try:
            await self._client.complete([{"role": "user", "content": "Hello"}], None, config=config)
        except ParleyError as exc:
            LOGGER.warning("Connection test failed: %s", exc)
            return False
        return True

    async def aclose(self) -> None:
        await self._registry.dispose_all()
        close = getattr(self._client, "aclose", None)
        if close is not None:
            result = close()
            if inspect.isawaitable(result):
                await result

    def _apply_config(self, config: GenerationConfig) -> None:
        self._config = config
        self._engine.update_config(config)
        update = getattr(self._client, "update_config", None)
        if update is not None:
            update(config)

    def _workspace_folder(self) -> Path | None:
        try:
            return self._host.project_root()
        except RuntimeError as exc:
            LOGGER.debug("No workspace folder for provider substitution: %s", exc)
            return None


def _provider_configs(settings: Settings) -> list[ProviderConfig]:
    try:
        return parse_provider_configs(settings.mcp_servers)
    except ConfigurationError as exc:
        LOGGER.error("Ignoring MCP server configuration: %s", exc)
        return []
