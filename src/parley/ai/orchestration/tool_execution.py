"""Executing tool intents and turning their outcomes into ``tool`` messages.

Every intent yields exactly one result. Failures of any kind (bad argument
JSON, unknown tool, disabled provider, handler exception, declined
confirmation) become a ``{"success": false, "error": ...}`` payload so the
model can react; they never end the turn.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ...errors import InvalidToolArgumentsError, ToolExecutionError
from .types import Message, ToolCallIntent

__all__ = [
    "ToolDispatcher",
    "ToolExecutionResult",
    "execute_tool_call",
    "execute_tools",
    "parse_tool_arguments",
    "serialize_tool_payload",
    "append_tool_results",
]

LOGGER = logging.getLogger(__name__)

ToolDispatcher = Callable[[str, Mapping[str, Any]], Awaitable[Any]]


@dataclass(slots=True, frozen=True)
class ToolExecutionResult:
    """Outcome of one tool call.

    Attributes:
        call_id: Id of the intent this answers.
        name: Wire name of the tool.
        success: Whether execution succeeded.
        content: JSON text placed in the ``tool`` message.
        error: Error message if failed.
        duration_ms: Execution time in milliseconds.
    """

    call_id: str
    name: str
    success: bool
    content: str
    error: str | None = None
    duration_ms: float = 0.0

    @classmethod
    def from_success(cls, call_id: str, name: str, result: Any, duration_ms: float = 0.0) -> ToolExecutionResult:
        return cls(
            call_id=call_id,
            name=name,
            success=True,
            content=serialize_tool_payload({"success": True, "result": _jsonable(result)}),
            duration_ms=duration_ms,
        )

    @classmethod
    def from_error(cls, call_id: str, name: str, error: ToolExecutionError, duration_ms: float = 0.0) -> ToolExecutionResult:
        return cls(
            call_id=call_id,
            name=name,
            success=False,
            content=serialize_tool_payload(error.to_dict()),
            error=error.message,
            duration_ms=duration_ms,
        )

    def to_message(self) -> Message:
        return Message.tool(self.content, tool_call_id=self.call_id, name=self.name)


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def _jsonable(result: Any) -> Any:
    """Reduce a handler result to JSON-compatible data."""
    if result is None or isinstance(result, (str, bool, int, float)):
        return result
    if isinstance(result, Mapping):
        return {str(key): _jsonable(value) for key, value in result.items()}
    if isinstance(result, (list, tuple)):
        return [_jsonable(item) for item in result]
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        return _jsonable(dataclasses.asdict(result))
    model_dump = getattr(result, "model_dump", None)
    if callable(model_dump):
        return _jsonable(model_dump(mode="json"))
    to_dict = getattr(result, "to_dict", None)
    if callable(to_dict):
        return _jsonable(to_dict())
    return str(result)


def serialize_tool_payload(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


def parse_tool_arguments(arguments: str, *, tool_name: str = "") -> dict[str, Any]:
    """Parse the raw JSON argument text of an intent.

    Raises:
        InvalidToolArgumentsError: If the text is not a JSON object.
    """
    if not arguments or not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise InvalidToolArgumentsError(
            f"Invalid JSON in tool arguments: {exc}", tool_name=tool_name, cause=exc
        ) from exc
    if not isinstance(parsed, dict):
        raise InvalidToolArgumentsError(
            f"Arguments must be a JSON object, got {type(parsed).__name__}",
            tool_name=tool_name,
        )
    return parsed


# -----------------------------------------------------------------------------
# Tool Execution
# -----------------------------------------------------------------------------


async def execute_tool_call(intent: ToolCallIntent, dispatcher: ToolDispatcher) -> ToolExecutionResult:
    """Execute one intent; tool errors are captured in the result."""

    start_time = time.perf_counter()
    try:
        arguments = parse_tool_arguments(intent.arguments_json, tool_name=intent.name)
        result = await dispatcher(intent.name, arguments)
    except ToolExecutionError as exc:
        duration_ms = (time.perf_counter() - start_time) * 1000
        LOGGER.warning("Tool %s failed [%s]: %s", intent.name, exc.error_code, exc.message)
        return ToolExecutionResult.from_error(intent.id, intent.name, exc, duration_ms)
    except Exception as exc:
        duration_ms = (time.perf_counter() - start_time) * 1000
        LOGGER.exception("Tool %s raised an unexpected error", intent.name)
        error = ToolExecutionError(str(exc) or type(exc).__name__, tool_name=intent.name, cause=exc)
        return ToolExecutionResult.from_error(intent.id, intent.name, error, duration_ms)
    duration_ms = (time.perf_counter() - start_time) * 1000
    LOGGER.debug("Tool %s completed in %.1fms", intent.name, duration_ms)
    return ToolExecutionResult.from_success(intent.id, intent.name, result, duration_ms)


async def execute_tools(
    intents: Sequence[ToolCallIntent],
    dispatcher: ToolDispatcher,
) -> tuple[ToolExecutionResult, ...]:
    """Execute intents one after another in emitted order."""

    results = []
    for intent in intents:
        results.append(await execute_tool_call(intent, dispatcher))
    return tuple(results)


def append_tool_results(
    transcript: list[Message],
    results: Sequence[ToolExecutionResult],
) -> None:
    for result in results:
        transcript.append(result.to_message())
