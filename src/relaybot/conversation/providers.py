"""
LLM backend abstractions for the relaybot conversation package.

Defines the `LLMProvider` Protocol so the `AgenticLoop` can open streaming
completions against any backend that speaks the OpenAI Responses event
format, without being tied to a specific SDK.

The concrete implementation, `OpenAIResponsesProvider`, uses
`openai.AsyncOpenAI().responses.create(..., stream=True)` and translates the
SDK's exceptions into the relaybot error hierarchy.

Also provides the core data types shared by the loop and the tools:
``ToolDefinition``, ``ToolCall`` and ``ToolResult``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol, runtime_checkable

from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError

from relaybot.conversation.errors import (
    BackendAPIError,
    BackendConnectionError,
    BackendRateLimitError,
    BackendStreamError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Core data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolDefinition:
    """Describes a callable tool available to the LLM.

    Attributes:
        name: The tool's unique name (used by the LLM to invoke it).
        description: Human-readable description shown in the LLM's tool prompt.
        parameters: JSON Schema dict describing the tool's input parameters.
        strict: Whether the backend should enforce the schema strictly.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)
    strict: bool = False

    def to_openai_format(self) -> dict[str, Any]:
        """Serialise to the Responses API function tool format."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "strict": self.strict,
        }


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the LLM.

    Attributes:
        call_id: Correlation ID returned by the LLM (echoed with the result).
        name: Name of the tool to invoke.
        arguments: Raw JSON-encoded arguments, not yet parsed or validated.
        id: Output item ID, when the backend supplied one.
    """

    call_id: str
    name: str
    arguments: str
    id: str | None = None

    def to_input_item(self) -> dict[str, Any]:
        """Return the transcript entry recording this call."""
        item: dict[str, Any] = {
            "type": "function_call",
            "call_id": self.call_id,
            "name": self.name,
            "arguments": self.arguments,
        }
        if self.id is not None:
            item["id"] = self.id
        return item


@dataclass(frozen=True)
class ToolResult:
    """Outcome of executing one ``ToolCall``.

    Attributes:
        call_id: The ``ToolCall.call_id`` this result answers.
        ok: ``True`` on success.
        value: Structured payload returned by the tool (or supplied with a
            ``ToolArgumentError``).
        error: Human-readable failure message when ``ok`` is ``False``.
    """

    call_id: str
    ok: bool
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, call_id: str, value: Any) -> ToolResult:
        return cls(call_id=call_id, ok=True, value=value)

    @classmethod
    def failure(cls, call_id: str, message: str, value: Any = None) -> ToolResult:
        return cls(call_id=call_id, ok=False, value=value, error=message)

    def output(self) -> str:
        """JSON text handed back to the model."""
        if self.ok:
            payload = self.value
        elif self.value is not None:
            payload = self.value
        else:
            payload = {"error": self.error}
        return json.dumps(payload, default=str)

    def to_input_item(self) -> dict[str, Any]:
        """Return the transcript entry recording this result."""
        return {
            "type": "function_call_output",
            "call_id": self.call_id,
            "output": self.output(),
        }


# ---------------------------------------------------------------------------
# LLMProvider Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for streaming LLM backends used by AgenticLoop."""

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[ToolDefinition],
    ) -> AsyncIterator[Any]:
        """Open a streaming completion.

        Args:
            messages: The full transcript in Responses API input format.
            tools: The tool declarations the model may call.

        Returns:
            An async iterator of low-level stream events.  Each event has a
            ``type`` attribute (``"response.output_text.delta"``,
            ``"response.output_item.done"``, ...).

        Raises:
            BackendConnectionError: If the call cannot be opened.
        """
        ...


# ---------------------------------------------------------------------------
# Concrete provider implementation
# ---------------------------------------------------------------------------


class OpenAIResponsesProvider:
    """LLM provider backed by the OpenAI Responses API.

    Attributes:
        model: The model identifier.
        base_url: The API base URL, or ``None`` for the SDK default.
        tool_choice: Passed through to the API (``"auto"`` by default).
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        base_url: str | None = None,
        tool_choice: str = "auto",
    ) -> None:
        self.model = model
        self.base_url = base_url
        self.tool_choice = tool_choice
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[ToolDefinition],
    ) -> AsyncIterator[Any]:
        """Open a streaming response and return its event iterator.

        Raises:
            BackendRateLimitError: If the API returns a 429 response.
            BackendStreamError: If the API endpoint cannot be reached.
            BackendAPIError: For other API-level failures (e.g. 4xx/5xx).
        """
        kwargs: dict[str, Any] = {
            "model": self.model,
            "input": messages,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = [t.to_openai_format() for t in tools]
            kwargs["tool_choice"] = self.tool_choice

        logger.debug(
            "LLM request: model=%s, input_items=%d, tools=%d",
            self.model,
            len(messages),
            len(tools),
        )

        try:
            response = await self._client.responses.create(**kwargs)
        except APIError as exc:
            raise _translate_error(exc) from exc

        return self._guard(response)

    async def _guard(self, response: AsyncIterator[Any]) -> AsyncIterator[Any]:
        """Re-raise SDK failures that happen mid-stream as relaybot errors."""
        try:
            async for event in response:
                yield event
        except APIError as exc:
            raise _translate_error(exc) from exc


def _translate_error(exc: APIError) -> BackendConnectionError:
    if isinstance(exc, RateLimitError):
        logger.warning("LLM rate limit exceeded: %s", exc)
        return BackendRateLimitError(f"Rate limit exceeded: {exc}")
    if isinstance(exc, APIStatusError):
        logger.error("LLM API error %d: %s", exc.status_code, exc)
        return BackendAPIError(
            f"LLM API returned status {exc.status_code}: {exc}",
            status_code=exc.status_code,
        )
    if isinstance(exc, APIConnectionError):
        logger.error("LLM connection failed: %s", exc)
        return BackendStreamError(f"Could not connect to LLM endpoint: {exc}")
    logger.error("LLM stream failed: %s", exc)
    return BackendStreamError(f"LLM stream failed: {exc}")
