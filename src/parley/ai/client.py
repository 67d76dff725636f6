"""Async chat-completions client built on httpx for OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Sequence, TypeVar

import httpx
from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam

from ..errors import ConfigurationError, MalformedResponseError, NetworkError
from .config import BodyMode, GenerationConfig
from .orchestration.types import ModelResponse, ToolCallIntent
from .streaming import StreamAssembler

LOGGER = logging.getLogger(__name__)
_T = TypeVar("_T")
__all__ = [
    "BodyMode",
    "ChatClient",
    "GenerationConfig",
    "build_headers",
    "build_request_body",
]


def build_request_body(
    defaults: Mapping[str, Any],
    overrides: Mapping[str, Any] | None,
    mode: BodyMode,
) -> Dict[str, Any]:
    """Combine default generation parameters with user-supplied body fields.

    ``merge`` layers ``overrides`` on top of ``defaults``. ``override`` sends
    only ``overrides``; when there are none the defaults are used so the
    request still names a model.
    """

    if mode == "override" and overrides:
        return dict(overrides)
    body = dict(defaults)
    if overrides:
        body.update(overrides)
    return body


def build_headers(config: GenerationConfig, *, stream: bool) -> Dict[str, str]:
    """Return request headers; raises ``ConfigurationError`` without any credential."""

    headers: Dict[str, str] = {"Content-Type": "application/json"}
    if stream:
        headers["Accept"] = "text/event-stream"
        headers["Cache-Control"] = "no-cache"
    headers.update({str(k): str(v) for k, v in (config.custom_headers or {}).items()})
    has_custom_auth = any(key.lower() == "authorization" for key in headers)
    if not has_custom_auth:
        if not config.api_key:
            raise ConfigurationError(
                "No API key configured. Set an API key or provide a custom Authorization header."
            )
        headers["Authorization"] = f"Bearer {config.api_key}"
    return headers


class ChatClient:
    """Sends chat-completion requests in buffered or streaming mode."""

    def __init__(
        self,
        config: GenerationConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(transport=transport)

    @property
    def config(self) -> GenerationConfig:
        return self._config

    def update_config(self, config: GenerationConfig) -> None:
        self._config = config

    def build_payload(
        self,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Iterable[ChatCompletionToolParam] | None = None,
        *,
        stream: bool,
        config: GenerationConfig | None = None,
    ) -> Dict[str, Any]:
        cfg = config or self._config
        defaults = {
            "model": cfg.model,
            "temperature": cfg.temperature,
            "max_tokens": cfg.max_tokens,
        }
        payload = build_request_body(defaults, cfg.custom_body_fields, cfg.body_mode)
        payload["messages"] = list(messages)
        tool_list = list(tools or ())
        if tool_list:
            payload["tools"] = tool_list
            payload.setdefault("tool_choice", "auto")
        if stream:
            payload["stream"] = True
        else:
            payload.pop("stream", None)
        return payload

    async def complete(
        self,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Iterable[ChatCompletionToolParam] | None = None,
        *,
        config: GenerationConfig | None = None,
    ) -> ModelResponse:
        """Send one buffered request and parse ``choices[0].message``."""

        cfg = config or self._config
        headers = build_headers(cfg, stream=False)
        payload = self.build_payload(messages, tools, stream=False, config=cfg)
        self._log_request(cfg, payload, headers)

        async def _post() -> httpx.Response:
            response = await self._http.post(
                cfg.endpoint, json=payload, headers=headers, timeout=cfg.request_timeout
            )
            await response.aread()
            return response

        response = await self._bounded(_post(), cfg)
        if response.status_code >= 400:
            raise _status_error(response.status_code, response.text)
        return _parse_buffered(response)

    async def stream(
        self,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Iterable[ChatCompletionToolParam] | None = None,
        *,
        on_content: Callable[[str], None] | None = None,
        config: GenerationConfig | None = None,
    ) -> ModelResponse:
        """Send a streaming request, forwarding content deltas as they arrive."""

        cfg = config or self._config
        headers = build_headers(cfg, stream=True)
        payload = self.build_payload(messages, tools, stream=True, config=cfg)
        self._log_request(cfg, payload, headers)
        assembler = StreamAssembler(on_content=on_content)

        async def _consume() -> None:
            async with self._http.stream(
                "POST", cfg.endpoint, json=payload, headers=headers, timeout=cfg.request_timeout
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise _status_error(response.status_code, body.decode("utf-8", errors="replace"))
                async for chunk in response.aiter_bytes():
                    assembler.feed(chunk)
                    if assembler.done:
                        break

        await self._bounded(_consume(), cfg)
        return assembler.finish()

    async def _bounded(self, operation: Awaitable[_T], cfg: GenerationConfig) -> _T:
        """Run ``operation`` under one deadline; httpx timeouts only bound single reads."""
        try:
            return await asyncio.wait_for(operation, timeout=cfg.request_timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise _timeout_error(cfg) from exc
        except httpx.TransportError as exc:
            raise _connection_error(exc) from exc

    def _log_request(
        self, cfg: GenerationConfig, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> None:
        LOGGER.debug(
            "Sending chat completion to %s (model=%s, messages=%s, tools=%s, stream=%s)",
            cfg.endpoint,
            payload.get("model"),
            len(payload.get("messages", ())),
            len(payload.get("tools", ())),
            bool(payload.get("stream")),
        )
        if not cfg.debug_logging:
            return
        safe_headers = {
            key: ("***" if key.lower() == "authorization" else value) for key, value in headers.items()
        }
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI request payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI request headers: %s", safe_headers)
            LOGGER.debug("AI request payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this instance created it."""

        if not self._owns_client:
            return
        result = self._http.aclose()
        if inspect.isawaitable(result):
            await result


# ----------------------------------------------------------------------
# Response parsing and error mapping
# ----------------------------------------------------------------------
def _parse_buffered(response: httpx.Response) -> ModelResponse:
    try:
        data = response.json()
    except ValueError as exc:
        raise MalformedResponseError("Model response was not valid JSON") from exc
    if not isinstance(data, Mapping):
        raise MalformedResponseError("Model response was not a JSON object")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], Mapping):
        raise MalformedResponseError("Model response contained no choices")
    choice = choices[0]
    message = choice.get("message")
    if not isinstance(message, Mapping):
        raise MalformedResponseError("Model response choice has no message")
    raw_calls = message.get("tool_calls") or []
    tool_calls: List[ToolCallIntent] = [
        ToolCallIntent.from_wire(call, index)
        for index, call in enumerate(raw_calls)
        if isinstance(call, Mapping)
    ]
    content = message.get("content")
    return ModelResponse(
        text=content if isinstance(content, str) else "",
        tool_calls=tuple(tool_calls),
        finish_reason=choice.get("finish_reason"),
    )


def _status_error(status: int, body: str) -> NetworkError:
    if status == 401:
        return NetworkError(
            "Authentication failed (401): check the API key",
            category=NetworkError.UNAUTHORIZED,
            status_code=status,
        )
    if status == 429:
        return NetworkError(
            "Rate limit exceeded (429): try again later",
            category=NetworkError.RATE_LIMITED,
            status_code=status,
        )
    if status >= 500:
        return NetworkError(
            f"Model server error ({status}): try again later",
            category=NetworkError.SERVER_ERROR,
            status_code=status,
        )
    detail = _extract_error_message(body) or f"HTTP {status}"
    return NetworkError(
        f"Request failed ({status}): {detail}",
        category=NetworkError.HTTP_ERROR,
        status_code=status,
    )


def _extract_error_message(body: str) -> str:
    if not body:
        return ""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()[:200]
    if isinstance(data, Mapping):
        error = data.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return body.strip()[:200]


def _timeout_error(cfg: GenerationConfig) -> NetworkError:
    return NetworkError(
        f"Request timed out after {cfg.request_timeout:g}s",
        category=NetworkError.TIMEOUT,
    )


def _connection_error(exc: httpx.TransportError) -> NetworkError:
    return NetworkError(
        f"Could not reach the model endpoint: {exc}",
        category=NetworkError.CONNECTION,
    )
