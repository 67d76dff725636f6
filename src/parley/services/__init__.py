"""Settings persistence and tool provider management."""

from .providers import ProviderConfig, ProviderKind, parse_provider_configs
from .provider_registry import ConnectionState, ProviderRegistry
from .settings import Settings, SettingsStore

__all__ = [
    "ConnectionState",
    "ProviderConfig",
    "ProviderKind",
    "ProviderRegistry",
    "Settings",
    "SettingsStore",
    "parse_provider_configs",
]
