"""Tool provider (MCP server) configuration.

Two entry shapes are accepted. The nested one::

    {"name": "files", "type": "stdio",
     "stdio": {"command": "npx", "args": ["server", "${workspaceFolder}"], "env": {}}}
    {"name": "search", "type": "sse", "sse": "http://localhost:8080/sse"}

and the flat one::

    {"name": "files", "kind": "stdio", "command": "npx", "args": [...], "env": {...}}
    {"name": "search", "kind": "websocket", "url": "ws://localhost:8080/ws"}

The list itself may be given as a JSON string.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from ..errors import ConfigurationError

__all__ = [
    "ProviderConfig",
    "ProviderKind",
    "WORKSPACE_FOLDER_TOKEN",
    "parse_provider_configs",
]

LOGGER = logging.getLogger(__name__)

WORKSPACE_FOLDER_TOKEN = "${workspaceFolder}"


class ProviderKind(str, Enum):
    STDIO = "stdio"
    SSE = "sse"
    WEBSOCKET = "websocket"


@dataclass(slots=True, frozen=True)
class ProviderConfig:
    """Connection parameters for one named tool provider."""

    name: str
    kind: ProviderKind
    command: str | None = None
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    url: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> ProviderConfig:
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("Provider entry is missing a 'name'")
        name = name.strip()
        if "_" in name:
            raise ConfigurationError(
                f"Provider name '{name}' must not contain '_': tool names are routed as <provider>_<tool>"
            )
        raw_kind = payload.get("kind", payload.get("type"))
        try:
            kind = ProviderKind(str(raw_kind).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Provider '{name}' has unsupported type {raw_kind!r}; expected stdio, sse or websocket"
            ) from None

        if kind is ProviderKind.STDIO:
            nested = payload.get("stdio")
            source = nested if isinstance(nested, Mapping) else payload
            command = source.get("command")
            if not isinstance(command, str) or not command.strip():
                raise ConfigurationError(f"Provider '{name}' needs a stdio 'command'")
            args = source.get("args") or []
            env = source.get("env") or {}
            if not isinstance(args, list) or not all(isinstance(item, str) for item in args):
                raise ConfigurationError(f"Provider '{name}' has non-string 'args'")
            if not isinstance(env, Mapping):
                raise ConfigurationError(f"Provider '{name}' has a non-object 'env'")
            return cls(
                name=name,
                kind=kind,
                command=command.strip(),
                args=tuple(args),
                env={str(key): str(value) for key, value in env.items()},
            )

        url = payload.get(kind.value) or payload.get("url")
        if not isinstance(url, str) or not url.strip():
            raise ConfigurationError(f"Provider '{name}' needs a {kind.value} URL")
        return cls(name=name, kind=kind, url=url.strip())

    def with_workspace(self, workspace_folder: str | Path | None) -> ProviderConfig:
        """Substitute ``${workspaceFolder}`` in stdio args and env values."""
        if self.kind is not ProviderKind.STDIO:
            return self
        folder = str(workspace_folder) if workspace_folder else ""
        return replace(
            self,
            args=tuple(arg.replace(WORKSPACE_FOLDER_TOKEN, folder) for arg in self.args),
            env={key: value.replace(WORKSPACE_FOLDER_TOKEN, folder) for key, value in self.env.items()},
        )

    def describe(self) -> str:
        if self.kind is ProviderKind.STDIO:
            return " ".join([self.command or "", *self.args]).strip()
        return self.url or ""


def parse_provider_configs(raw: str | Sequence[Mapping[str, Any]] | None) -> list[ProviderConfig]:
    """Parse provider definitions from a list or its JSON text.

    Raises:
        ConfigurationError: On invalid JSON, malformed entries or duplicate names.
    """
    if raw is None:
        return []
    entries: Iterable[Any]
    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"MCP server configuration is not valid JSON: {exc}") from exc
        if not isinstance(decoded, list):
            raise ConfigurationError("MCP server configuration must be a JSON array")
        entries = decoded
    else:
        entries = raw

    configs: list[ProviderConfig] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"MCP server entry {index} must be an object")
        config = ProviderConfig.from_mapping(entry)
        if config.name in seen:
            raise ConfigurationError(f"Duplicate MCP server name '{config.name}'")
        seen.add(config.name)
        configs.append(config)
    LOGGER.debug("Parsed %d provider configuration(s)", len(configs))
    return configs
