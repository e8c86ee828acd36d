"""
Streaming response consumer.

Turns the backend's low-level Responses API events into the three events
the ``AgenticLoop`` cares about:

- ``TextDelta`` for every ``response.output_text.delta`` (forwarded as-is,
  never buffered);
- ``ToolCallCompleted`` for every ``response.output_item.done`` whose item is
  a ``function_call``;
- a single trailing ``EndOfStream`` carrying all completed calls in arrival
  order.

Events the loop does not need (``response.created``, reasoning items, usage,
...) are skipped.  Nothing is reordered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Union

from relaybot.conversation.errors import BackendStreamError
from relaybot.conversation.providers import ToolCall

logger = logging.getLogger(__name__)

TEXT_DELTA_EVENT = "response.output_text.delta"
ITEM_DONE_EVENT = "response.output_item.done"
_FAILURE_EVENTS = frozenset({"error", "response.failed"})


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallCompleted:
    call: ToolCall


@dataclass(frozen=True)
class EndOfStream:
    tool_calls: tuple[ToolCall, ...] = ()


StreamEvent = Union[TextDelta, ToolCallCompleted, EndOfStream]


def _field(obj: Any, name: str, default: Any = None) -> Any:
    # SDK events are pydantic models; tests and proxies may hand us dicts.
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _error_message(event: Any) -> str:
    message = _field(event, "message")
    if message:
        return str(message)
    error = _field(_field(event, "response"), "error")
    if error is not None:
        return str(_field(error, "message") or error)
    return "unknown error"


async def iter_stream_events(raw_events: AsyncIterator[Any]) -> AsyncIterator[StreamEvent]:
    """Map low-level backend events to ``StreamEvent`` objects.

    Args:
        raw_events: The async iterator returned by ``LLMProvider.stream``.

    Yields:
        ``TextDelta`` and ``ToolCallCompleted`` events in arrival order,
        followed by exactly one ``EndOfStream``.

    Raises:
        BackendStreamError: If the backend reports an error event.
    """
    pending: list[ToolCall] = []

    async for event in raw_events:
        event_type = _field(event, "type")

        if event_type == TEXT_DELTA_EVENT:
            delta = _field(event, "delta")
            if delta:
                yield TextDelta(delta)

        elif event_type == ITEM_DONE_EVENT:
            item = _field(event, "item")
            if _field(item, "type") != "function_call":
                continue
            call = ToolCall(
                call_id=_field(item, "call_id"),
                name=_field(item, "name"),
                arguments=_field(item, "arguments") or "",
                id=_field(item, "id"),
            )
            pending.append(call)
            logger.debug("Tool call completed in stream: %s (%s)", call.name, call.call_id)
            yield ToolCallCompleted(call)

        elif event_type in _FAILURE_EVENTS:
            raise BackendStreamError(f"LLM stream reported an error: {_error_message(event)}")

    yield EndOfStream(tuple(pending))
