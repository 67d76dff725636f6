"""Conversation engine: drives one turn through the model/tool loop.

A turn moves through building the request, awaiting the response and,
while the model keeps requesting tools, executing them and building the
next request. The loop ends with plain content or an unrecoverable error
(configuration, network, malformed response, iteration cap, cancellation).
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Collection, Mapping, Protocol, Sequence

from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam

from ...errors import ParleyError, ToolLoopExceededError, TurnCancelledError
from ..config import GenerationConfig
from .cancellation import CancellationController
from .tool_execution import ToolExecutionResult, append_tool_results, execute_tools
from .tools.resolver import ToolResolver
from .types import ChatEvent, EventSink, Message, ModelResponse, TurnOutput

__all__ = ["ConversationEngine", "ModelClient", "build_messages"]

LOGGER = logging.getLogger(__name__)


class ModelClient(Protocol):
    """The two request paths the engine needs from the HTTP client."""

    async def complete(
        self,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Sequence[ChatCompletionToolParam] | None = None,
        *,
        config: GenerationConfig | None = None,
    ) -> ModelResponse:
        ...

    async def stream(
        self,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Sequence[ChatCompletionToolParam] | None = None,
        *,
        on_content: Callable[[str], None] | None = None,
        config: GenerationConfig | None = None,
    ) -> ModelResponse:
        ...


def build_messages(transcript: Sequence[Message], system_prompt: str | None) -> list[ChatCompletionMessageParam]:
    """Convert the transcript to wire messages.

    A configured system prompt goes first and replaces any system messages
    already in the transcript. The transcript itself is left untouched.
    """
    if system_prompt:
        kept = [message for message in transcript if message.role != "system"]
        ordered = [Message.system(system_prompt), *kept]
    else:
        ordered = list(transcript)
    return [message.to_chat_param() for message in ordered]


class ConversationEngine:
    """Runs turns against a shared transcript.

    Example:
        engine = ConversationEngine(client, resolver, config=config)
        transcript: list[Message] = []
        output = await engine.send_message(transcript, "hello", sink=print)
    """

    def __init__(
        self,
        client: ModelClient,
        resolver: ToolResolver,
        *,
        config: GenerationConfig | None = None,
        cancellation: CancellationController | None = None,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._config = config or GenerationConfig()
        self._cancellation = cancellation or CancellationController()

    @property
    def config(self) -> GenerationConfig:
        return self._config

    def update_config(self, config: GenerationConfig) -> None:
        """Swap the snapshot used by the next turn; a running turn keeps its own."""
        self._config = config

    @property
    def resolver(self) -> ToolResolver:
        return self._resolver

    @property
    def busy(self) -> bool:
        return self._cancellation.active

    def cancel(self) -> bool:
        return self._cancellation.cancel()

    async def send_message(
        self,
        transcript: list[Message],
        text: str,
        sink: EventSink,
        *,
        selected_providers: Sequence[str] = (),
    ) -> TurnOutput:
        """Append a user message and run one turn."""
        if self.busy:
            raise RuntimeError("A turn is already in progress")
        transcript.append(Message.user(text))
        return await self.run_turn(transcript, sink, selected_providers=selected_providers)

    async def run_turn(
        self,
        transcript: list[Message],
        sink: EventSink,
        *,
        selected_providers: Sequence[str] = (),
    ) -> TurnOutput:
        """Run the model/tool loop until plain content or a terminal error.

        Exactly one terminal event (``turn_end`` or ``error``) reaches ``sink``.
        Appended transcript entries are never removed, including on failure.
        """

        config = self._config
        self._cancellation.begin()
        run_id = uuid.uuid4().hex[:8]
        started = time.perf_counter()
        counters = {"iterations": 0, "tool_calls": 0}
        _emit(sink, ChatEvent.turn_start())
        try:
            output = await self._run_loop(
                transcript, sink, config, tuple(selected_providers), counters, run_id
            )
        except TurnCancelledError as exc:
            LOGGER.info("Turn %s cancelled after %d iteration(s)", run_id, counters["iterations"])
            _emit(sink, ChatEvent.failure(str(exc)))
            return TurnOutput.from_error(
                str(exc),
                cancelled=True,
                iteration_count=counters["iterations"],
                tool_call_count=counters["tool_calls"],
            )
        except ParleyError as exc:
            LOGGER.warning("Turn %s failed: %s", run_id, exc)
            _emit(sink, ChatEvent.failure(str(exc)))
            return TurnOutput.from_error(
                str(exc),
                iteration_count=counters["iterations"],
                tool_call_count=counters["tool_calls"],
            )
        except Exception as exc:
            LOGGER.exception("Turn %s failed with an unexpected exception", run_id)
            _emit(sink, ChatEvent.failure(f"Unexpected error: {exc}"))
            return TurnOutput.from_error(
                str(exc),
                iteration_count=counters["iterations"],
                tool_call_count=counters["tool_calls"],
            )
        finally:
            self._cancellation.end()
        LOGGER.debug(
            "Turn %s finished in %.0fms (%d iteration(s), %d tool call(s))",
            run_id,
            (time.perf_counter() - started) * 1000,
            output.iteration_count,
            output.tool_call_count,
        )
        _emit(sink, ChatEvent.turn_end(output.response))
        return output

    async def _run_loop(
        self,
        transcript: list[Message],
        sink: EventSink,
        config: GenerationConfig,
        selected_providers: tuple[str, ...],
        counters: dict[str, int],
        run_id: str,
    ) -> TurnOutput:
        max_iterations = max(1, config.max_tool_iterations)
        while True:
            self._cancellation.raise_if_cancelled()
            counters["iterations"] += 1
            iteration = counters["iterations"]
            LOGGER.debug("Turn %s iteration %d", run_id, iteration)

            tools = await self._collect_tools(config, selected_providers)
            messages = build_messages(transcript, config.system_prompt)
            response = await self._cancellation.run(
                self._request(messages, tools, config, sink)
            )
            self._cancellation.raise_if_cancelled()

            if not response.has_tool_calls:
                transcript.append(Message.assistant(response.text))
                return TurnOutput(
                    response=response.text,
                    iteration_count=iteration,
                    tool_call_count=counters["tool_calls"],
                    metadata={"finish_reason": response.finish_reason},
                )

            transcript.append(response.to_message())
            names = [call.name for call in response.tool_calls]
            _emit(sink, ChatEvent.tool_progress(names))
            results = await self._execute(response, selected_providers, config)
            append_tool_results(transcript, results)
            counters["tool_calls"] += len(results)

            if iteration >= max_iterations:
                LOGGER.warning("Turn %s reached max iterations (%d)", run_id, max_iterations)
                raise ToolLoopExceededError(max_iterations)

    async def _collect_tools(
        self, config: GenerationConfig, selected_providers: tuple[str, ...]
    ) -> list[ChatCompletionToolParam]:
        if not config.enable_tools:
            return []
        specs = await self._resolver.collect_tools(
            selected_providers=selected_providers,
            enabled_builtins=config.enabled_tools,
        )
        return [spec.to_openai_tool() for spec in specs]

    async def _request(
        self,
        messages: list[ChatCompletionMessageParam],
        tools: list[ChatCompletionToolParam],
        config: GenerationConfig,
        sink: EventSink,
    ) -> ModelResponse:
        if not config.enable_stream:
            response = await self._client.complete(messages, tools or None, config=config)
            if response.text:
                _emit(sink, ChatEvent.delta(response.text))
            return response

        def on_content(delta: str) -> None:
            if not self._cancellation.cancelled:
                _emit(sink, ChatEvent.delta(delta))

        return await self._client.stream(messages, tools or None, on_content=on_content, config=config)

    async def _execute(
        self,
        response: ModelResponse,
        selected_providers: Collection[str],
        config: GenerationConfig,
    ) -> tuple[ToolExecutionResult, ...]:
        async def dispatch(name: str, arguments: Mapping[str, Any]) -> Any:
            return await self._resolver.dispatch(
                name,
                arguments,
                selected_providers=selected_providers,
                enabled_builtins=config.enabled_tools,
            )

        return await execute_tools(response.tool_calls, dispatch)


def _emit(sink: EventSink, event: ChatEvent) -> None:
    try:
        sink(event)
    except Exception:
        LOGGER.exception("Event sink raised while handling %s", event.kind)
