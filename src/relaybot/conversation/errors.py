"""
Exception hierarchy for the relaybot conversation package.

Only backend failures, output-sink failures and the iteration guard escape
the ``AgenticLoop``.  Everything tool-related is absorbed by the
``ToolExecutor`` and handed back to the model as a failed tool result so it
can explain the problem in natural language.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base exception for all relaybot errors."""


# ---------------------------------------------------------------------------
# Backend (fatal)
# ---------------------------------------------------------------------------


class BackendConnectionError(RelayError):
    """Raised when the streaming completion cannot be opened or consumed."""


class BackendRateLimitError(BackendConnectionError):
    """Raised when the backend returns a rate-limit (429) response."""


class BackendAPIError(BackendConnectionError):
    """Raised for other backend API errors (e.g. 5xx, authentication failures).

    Attributes:
        status_code: HTTP status code from the API, or ``None`` if unavailable.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendStreamError(BackendConnectionError):
    """Raised when an already-open stream fails or reports an error event."""


# ---------------------------------------------------------------------------
# Tools (recoverable)
# ---------------------------------------------------------------------------


class DuplicateToolError(RelayError):
    """Raised when registering a tool whose name is already taken."""


class ToolNotFoundError(RelayError):
    """Raised by ``ToolRegistry.lookup`` for an unregistered tool name."""


class ToolArgumentError(RelayError):
    """Raised by a tool handler when its arguments violate a constraint.

    The message is shown verbatim to the model and the user.

    Attributes:
        payload: Optional structured result to hand back to the model in
            place of a bare ``{"error": message}`` object.
    """

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class ToolExecutionError(RelayError):
    """Wraps an unexpected exception raised inside a tool handler."""


class ToolTimeoutError(RelayError):
    """Raised when a tool call outlives the executor's own timeout.

    A ``TimeoutError`` raised by the handler itself is not this error; it is
    wrapped as ``ToolExecutionError`` like any other handler failure.
    """


# ---------------------------------------------------------------------------
# Turn-level (fatal to the current turn only)
# ---------------------------------------------------------------------------


class OutputSinkError(RelayError):
    """Raised when the output sink rejects or fails to deliver an update."""


class MaxIterationsExceededError(RelayError):
    """Raised when the model keeps calling tools past ``max_iterations``."""
