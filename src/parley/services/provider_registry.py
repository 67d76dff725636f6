"""Registry of live connections to external tool providers (MCP servers).

Each connection is owned by a dedicated runner task that enters the
transport and session contexts, signals readiness and then waits until it is
asked to close. Transport contexts are therefore always entered and exited by
the same task. Connect and disconnect for one name are serialized by a
per-name lock; different names never block each other.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Iterable, Mapping, Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.websocket import websocket_client

from ..ai.orchestration.tools import QualifiedName, ToolSpec
from ..errors import NotConnectedError, ProviderConnectionError, ToolExecutionError
from .providers import ProviderConfig, ProviderKind

__all__ = [
    "ConnectionState",
    "ProviderRegistry",
    "ProviderSession",
    "SessionOpener",
    "open_mcp_session",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_CLOSE_TIMEOUT = 5.0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ProviderSession(Protocol):
    """The subset of :class:`mcp.ClientSession` the registry calls."""

    async def list_tools(self) -> Any:
        ...

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        ...


SessionOpener = Callable[[ProviderConfig], AsyncContextManager[ProviderSession]]


@asynccontextmanager
async def open_mcp_session(config: ProviderConfig) -> AsyncIterator[ClientSession]:
    """Open the transport for ``config`` and yield an initialized MCP session."""

    async with AsyncExitStack() as stack:
        if config.kind is ProviderKind.STDIO:
            params = StdioServerParameters(
                command=config.command or "",
                args=list(config.args),
                env=dict(config.env) or None,
            )
            read, write = await stack.enter_async_context(stdio_client(params))
        elif config.kind is ProviderKind.SSE:
            read, write = await stack.enter_async_context(sse_client(config.url or ""))
        else:
            read, write = await stack.enter_async_context(websocket_client(config.url or ""))
        session = await stack.enter_async_context(ClientSession(read, write))
        await session.initialize()
        yield session


@dataclass(eq=False)
class _Connection:
    config: ProviderConfig
    state: ConnectionState = ConnectionState.CONNECTING
    session: ProviderSession | None = None
    task: asyncio.Task[None] | None = None
    error: BaseException | None = None
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    closing: asyncio.Event = field(default_factory=asyncio.Event)


class ProviderRegistry:
    """Name-keyed set of provider connections.

    Example:
        registry = ProviderRegistry(parse_provider_configs(settings.mcp_servers))
        await registry.connect("files")
        tools = await registry.list_tools("files")
        result = await registry.call_tool("files", "read", {"path": "README.md"})
        await registry.dispose_all()
    """

    def __init__(
        self,
        configs: Iterable[ProviderConfig] = (),
        *,
        workspace_folder: str | Path | None = None,
        session_opener: SessionOpener | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
    ) -> None:
        self._configs: dict[str, ProviderConfig] = {config.name: config for config in configs}
        self._workspace_folder = workspace_folder
        self._opener: SessionOpener = session_opener or open_mcp_session
        self._connect_timeout = connect_timeout
        self._close_timeout = close_timeout
        self._connections: dict[str, _Connection] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def configured_names(self) -> list[str]:
        return list(self._configs)

    def get_config(self, name: str) -> ProviderConfig | None:
        return self._configs.get(name)

    def update_configs(self, configs: Iterable[ProviderConfig]) -> None:
        """Replace provider definitions. Live connections stay until disconnected."""
        self._configs = {config.name: config for config in configs}

    # ------------------------------------------------------------------
    # Connection state
    # ------------------------------------------------------------------
    def state(self, name: str) -> ConnectionState:
        connection = self._connections.get(name)
        if connection is None:
            return ConnectionState.DISCONNECTED
        return connection.state

    def is_connected(self, name: str) -> bool:
        return self.state(name) is ConnectionState.CONNECTED

    def list_connected(self) -> list[str]:
        return [name for name, conn in self._connections.items() if conn.state is ConnectionState.CONNECTED]

    async def connect(self, name: str) -> None:
        """Connect ``name``; an existing connection is closed first.

        Raises:
            ProviderConnectionError: If the name is not configured or the
                handshake fails or times out.
        """
        config = self._configs.get(name)
        if config is None:
            raise ProviderConnectionError(name, "no configuration with this name")
        async with self._lock_for(name):
            if name in self._connections:
                LOGGER.info("Reconnecting provider %s", name)
                await self._close_locked(name)
            connection = _Connection(config=config.with_workspace(self._workspace_folder))
            self._connections[name] = connection
            LOGGER.info("Connecting provider %s (%s: %s)", name, config.kind.value, config.describe())
            connection.task = asyncio.create_task(self._run(connection), name=f"provider-{name}")
            try:
                await asyncio.wait_for(connection.ready.wait(), timeout=self._connect_timeout)
            except asyncio.TimeoutError:
                self._connections.pop(name, None)
                await self._stop(connection)
                raise ProviderConnectionError(
                    name, f"timed out after {self._connect_timeout:g}s"
                ) from None
            if connection.state is not ConnectionState.CONNECTED:
                self._connections.pop(name, None)
                await self._stop(connection)
                detail = str(connection.error) if connection.error else "connection closed during handshake"
                raise ProviderConnectionError(name, detail) from connection.error
        LOGGER.info("Provider %s connected", name)

    async def disconnect(self, name: str) -> bool:
        """Close ``name``; returns False (and does nothing) when it is not connected."""
        async with self._lock_for(name):
            closed = await self._close_locked(name)
        if closed:
            LOGGER.info("Provider %s disconnected", name)
        return closed

    async def dispose_all(self) -> None:
        """Disconnect every provider. Never raises."""
        for name in list(self._connections):
            try:
                await self.disconnect(name)
            except Exception as exc:
                LOGGER.warning("Failed to disconnect provider %s: %s", name, exc)

    # ------------------------------------------------------------------
    # Tool access
    # ------------------------------------------------------------------
    async def list_tools(self, name: str) -> list[ToolSpec]:
        """Return the provider's tool descriptors, unqualified, in server order."""
        session = self._live_session(name)
        try:
            result = await session.list_tools()
        except Exception as exc:
            raise ProviderConnectionError(name, f"listing tools failed: {exc}") from exc
        specs: list[ToolSpec] = []
        for tool in _field(result, "tools") or ():
            tool_name = _field(tool, "name")
            if not tool_name:
                continue
            schema = _field(tool, "inputSchema") or {}
            specs.append(
                ToolSpec(
                    name=str(tool_name),
                    description=str(_field(tool, "description") or f"Tool provided by {name}: {tool_name}"),
                    parameters=dict(schema) if isinstance(schema, Mapping) else {},
                )
            )
        return specs

    async def call_tool(self, name: str, tool_name: str, arguments: Mapping[str, Any]) -> Any:
        """Forward a call and return the structured result.

        Raises:
            NotConnectedError: If ``name`` has no live connection.
            ToolExecutionError: If the call fails or the server flags an error.
        """
        wire_name = QualifiedName.for_provider(name, tool_name).wire_name
        session = self._live_session(name, tool_name=wire_name)
        LOGGER.debug("Calling %s on provider %s", tool_name, name)
        try:
            result = await session.call_tool(tool_name, arguments=dict(arguments))
        except Exception as exc:
            raise ToolExecutionError(
                f"Provider '{name}' failed to run '{tool_name}': {exc}",
                tool_name=wire_name,
                cause=exc,
            ) from exc
        payload = _normalize_result(result)
        if payload.get("isError"):
            raise ToolExecutionError(_result_text(payload) or "Provider reported an error", tool_name=wire_name)
        return payload

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _lock_for(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    def _live_session(self, name: str, *, tool_name: str = "") -> ProviderSession:
        connection = self._connections.get(name)
        if connection is None or connection.state is not ConnectionState.CONNECTED or connection.session is None:
            raise NotConnectedError(name, tool_name=tool_name)
        return connection.session

    async def _run(self, connection: _Connection) -> None:
        name = connection.config.name
        try:
            async with self._opener(connection.config) as session:
                connection.session = session
                connection.state = ConnectionState.CONNECTED
                connection.ready.set()
                await connection.closing.wait()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            connection.error = exc
            if connection.ready.is_set():
                LOGGER.warning("Provider %s connection ended with an error: %s", name, exc)
            else:
                LOGGER.warning("Provider %s failed to connect: %s", name, exc)
        finally:
            connection.session = None
            connection.state = ConnectionState.DISCONNECTED
            connection.ready.set()

    async def _close_locked(self, name: str) -> bool:
        connection = self._connections.pop(name, None)
        if connection is None:
            return False
        await self._stop(connection)
        return True

    async def _stop(self, connection: _Connection) -> None:
        connection.closing.set()
        task = connection.task
        if task is None or task.done():
            return
        done, _ = await asyncio.wait({task}, timeout=self._close_timeout)
        if not done:
            LOGGER.warning("Provider %s did not close in time; cancelling", connection.config.name)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


def _field(obj: Any, key: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _normalize_result(result: Any) -> dict[str, Any]:
    model_dump = getattr(result, "model_dump", None)
    if callable(model_dump):
        return model_dump(mode="json", exclude_none=True)
    if isinstance(result, Mapping):
        return dict(result)
    return {"content": [{"type": "text", "text": str(result)}]}


def _result_text(payload: Mapping[str, Any]) -> str:
    parts = [
        str(item.get("text"))
        for item in payload.get("content") or ()
        if isinstance(item, Mapping) and item.get("type") == "text" and item.get("text")
    ]
    return "\n".join(parts)
