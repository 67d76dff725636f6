"""Per-turn generation settings snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2000
DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_TOOL_ITERATIONS = 10

BodyMode = Literal["merge", "override"]

__all__ = ["BodyMode", "GenerationConfig"]


@dataclass(slots=True, frozen=True)
class GenerationConfig:
    """Immutable per-turn snapshot of everything needed to call the model."""

    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    custom_headers: Mapping[str, str] = field(default_factory=dict)
    custom_body_fields: Mapping[str, Any] = field(default_factory=dict)
    override_default_body: bool = False
    enable_stream: bool = True
    enable_tools: bool = True
    system_prompt: str | None = None
    enabled_tools: tuple[str, ...] = ()
    request_timeout: float = DEFAULT_TIMEOUT
    max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS
    debug_logging: bool = False

    @property
    def body_mode(self) -> BodyMode:
        return "override" if self.override_default_body else "merge"

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def with_overrides(self, **changes: Any) -> GenerationConfig:
        return replace(self, **changes)

    @classmethod
    def from_settings(cls, settings: Any) -> GenerationConfig:
        """Snapshot a settings object (see ``parley.services.settings.Settings``)."""

        system_prompt = (getattr(settings, "system_prompt", "") or "").strip() or None
        return cls(
            base_url=settings.base_url or DEFAULT_BASE_URL,
            api_key=settings.api_key or "",
            model=settings.model or DEFAULT_MODEL,
            temperature=float(settings.temperature),
            max_tokens=int(settings.max_tokens),
            custom_headers=dict(settings.custom_headers or {}),
            custom_body_fields=dict(settings.custom_body_fields or {}),
            override_default_body=bool(settings.override_default_body),
            enable_stream=bool(settings.enable_stream),
            enable_tools=bool(settings.enable_tools),
            system_prompt=system_prompt,
            enabled_tools=tuple(settings.enabled_tools or ()),
            request_timeout=float(settings.request_timeout or DEFAULT_TIMEOUT),
            max_tool_iterations=int(settings.max_tool_iterations or DEFAULT_MAX_TOOL_ITERATIONS),
            debug_logging=bool(settings.debug_logging),
        )

