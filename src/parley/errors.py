"""Error taxonomy shared across the client, orchestration and provider layers.

Errors fall into two groups. Turn-terminal errors (configuration, network,
malformed response, loop cap, cancellation) end a turn and are reported to the
caller. Tool errors are recovered locally: the engine serializes them into a
``tool`` message so the model can react to the failure.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "ErrorCode",
    "ParleyError",
    "ConfigurationError",
    "NetworkError",
    "MalformedResponseError",
    "ToolLoopExceededError",
    "TurnCancelledError",
    "ProviderConnectionError",
    "ToolExecutionError",
    "UnknownToolError",
    "ProviderDisabledError",
    "ToolDisabledError",
    "NotConnectedError",
    "ToolDeclinedError",
    "InvalidToolArgumentsError",
    "DuplicateToolError",
]


class ErrorCode:
    """Machine-readable codes attached to tool failures."""

    UNKNOWN_TOOL = "unknown_tool"
    PROVIDER_DISABLED = "provider_disabled"
    NOT_CONNECTED = "not_connected"
    DECLINED = "declined"
    INVALID_ARGUMENTS = "invalid_arguments"
    TOOL_DISABLED = "tool_disabled"
    EXECUTION_FAILED = "execution_failed"


class ParleyError(Exception):
    """Base class for every error raised by parley."""


# -----------------------------------------------------------------------------
# Turn-terminal errors
# -----------------------------------------------------------------------------


class ConfigurationError(ParleyError):
    """Raised when the configuration cannot produce a valid request."""


class NetworkError(ParleyError):
    """Raised when the model endpoint cannot be reached or answers with an error.

    Attributes:
        category: One of ``unauthorized``, ``rate_limited``, ``server_error``,
            ``timeout``, ``connection`` or ``http_error``.
        status_code: HTTP status when the server answered, otherwise ``None``.
    """

    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    HTTP_ERROR = "http_error"

    def __init__(self, message: str, *, category: str = HTTP_ERROR, status_code: int | None = None) -> None:
        self.category = category
        self.status_code = status_code
        super().__init__(message)


class MalformedResponseError(ParleyError):
    """Raised when a buffered response has no usable ``choices``."""


class ToolLoopExceededError(ParleyError):
    """Raised when the model keeps requesting tools past the iteration cap."""

    def __init__(self, max_iterations: int) -> None:
        self.max_iterations = max_iterations
        super().__init__(f"Tool call loop exceeded {max_iterations} iterations")


class TurnCancelledError(ParleyError):
    """Raised when the caller aborts the in-flight turn."""

    def __init__(self, message: str = "Request cancelled") -> None:
        super().__init__(message)


class ProviderConnectionError(ParleyError):
    """Raised when a single provider fails to connect or disconnect cleanly."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"Provider '{provider}': {message}")


# -----------------------------------------------------------------------------
# Recoverable tool errors
# -----------------------------------------------------------------------------


class ToolExecutionError(ParleyError):
    """Raised when a tool call fails; always recovered into the transcript."""

    error_code: str = ErrorCode.EXECUTION_FAILED

    def __init__(self, message: str, *, tool_name: str = "", cause: BaseException | None = None) -> None:
        self.tool_name = tool_name
        self.cause = cause
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the failure payload appended as a ``tool`` message."""
        return {"success": False, "error": self.message, "code": self.error_code}


class UnknownToolError(ToolExecutionError):
    error_code = ErrorCode.UNKNOWN_TOOL

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' not found", tool_name=name)


class ProviderDisabledError(ToolExecutionError):
    error_code = ErrorCode.PROVIDER_DISABLED

    def __init__(self, provider: str, tool_name: str = "") -> None:
        self.provider = provider
        super().__init__(
            f"Provider '{provider}' is not enabled for this conversation",
            tool_name=tool_name,
        )


class NotConnectedError(ToolExecutionError):
    error_code = ErrorCode.NOT_CONNECTED

    def __init__(self, provider: str, tool_name: str = "") -> None:
        self.provider = provider
        super().__init__(f"Provider '{provider}' is not connected", tool_name=tool_name)


class ToolDeclinedError(ToolExecutionError):
    """The user refused a confirmation prompt for a mutating action."""

    error_code = ErrorCode.DECLINED


class InvalidToolArgumentsError(ToolExecutionError):
    error_code = ErrorCode.INVALID_ARGUMENTS


class DuplicateToolError(ParleyError):
    """Raised when registering a built-in tool whose name is taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolDisabledError(ToolExecutionError):
    """A built-in tool exists but is excluded by the enabled-tools allow-list."""

    error_code = ErrorCode.TOOL_DISABLED

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is disabled", tool_name=name)
