"""Unit tests for relaybot.conversation.loop.AgenticLoop."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from relaybot.conversation.errors import (
    BackendAPIError,
    MaxIterationsExceededError,
    OutputSinkError,
)
from relaybot.conversation.loop import AgenticLoop, LoopState
from relaybot.conversation.providers import ToolDefinition
from relaybot.conversation.sink import BufferedOutputSink, TaskStatus
from relaybot.conversation.tools.dice import DiceTool
from relaybot.conversation.tools.registry import ToolRegistry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _text(delta: str) -> SimpleNamespace:
    return SimpleNamespace(type="response.output_text.delta", delta=delta)


def _call(call_id: str, name: str, args: dict[str, Any] | str) -> SimpleNamespace:
    raw = args if isinstance(args, str) else json.dumps(args)
    item = SimpleNamespace(
        type="function_call", call_id=call_id, name=name, arguments=raw, id=f"fc_{call_id}"
    )
    return SimpleNamespace(type="response.output_item.done", item=item)


async def _aiter(events: list[Any]):
    for event in events:
        yield event


def _make_provider(*streams: list[Any]) -> MagicMock:
    """Return a mock LLMProvider that opens *streams* in sequence."""
    mock = MagicMock()
    mock.stream = AsyncMock(side_effect=[_aiter(s) for s in streams])
    return mock


def _dice_registry() -> ToolRegistry:
    registry = ToolRegistry()
    DiceTool().register(registry)
    return registry


def _echo_registry(*names: str, delay: dict[str, float] | None = None) -> ToolRegistry:
    registry = ToolRegistry()
    delay = delay or {}
    for name in names:

        async def _handler(args: dict[str, Any], _name: str = name) -> dict[str, Any]:
            await asyncio.sleep(delay.get(_name, 0))
            return {"tool": _name, "args": args}

        registry.register(
            ToolDefinition(name=name, description=f"{name} tool", parameters={"type": "object"}),
            _handler,
        )
    return registry


def _sent_messages(provider: MagicMock, call_index: int) -> list[dict[str, Any]]:
    return provider.stream.call_args_list[call_index][0][0]


# ---------------------------------------------------------------------------
# Direct response (no tool calls)
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_run_without_tool_calls_finishes_after_one_cycle() -> None:
    provider = _make_provider([_text("Hello"), _text(", "), _text("world!")])
    sink = BufferedOutputSink()
    loop = AgenticLoop(provider=provider, registry=_dice_registry())

    result = await loop.run([{"role": "user", "content": "Hi"}], sink)

    assert result.state is LoopState.DONE
    assert result.iterations == 1
    assert result.text == "Hello, world!"
    assert [c["text"] for c in sink.chunks] == ["Hello", ", ", "world!"]
    provider.stream.assert_called_once()


@pytest.mark.anyio
async def test_run_does_not_finish_the_sink() -> None:
    provider = _make_provider([_text("ok")])
    sink = BufferedOutputSink()

    await AgenticLoop(provider=provider, registry=_dice_registry()).run([], sink)

    assert not sink.finished


@pytest.mark.anyio
async def test_run_passes_transcript_and_declarations_to_provider() -> None:
    provider = _make_provider([_text("ok")])
    transcript = [
        {"role": "system", "content": "Be nice."},
        {"role": "user", "content": "Hi"},
    ]

    await AgenticLoop(provider=provider, registry=_dice_registry()).run(
        transcript, BufferedOutputSink()
    )

    messages, tools = provider.stream.call_args[0]
    assert messages == transcript
    assert [t.name for t in tools] == ["roll_dice"]


@pytest.mark.anyio
async def test_run_does_not_mutate_callers_transcript() -> None:
    provider = _make_provider(
        [_call("c1", "roll_dice", {"sides": 6, "count": 1})],
        [_text("done")],
    )
    transcript = [{"role": "user", "content": "roll"}]

    result = await AgenticLoop(provider=provider, registry=_dice_registry()).run(
        transcript, BufferedOutputSink()
    )

    assert transcript == [{"role": "user", "content": "roll"}]
    assert len(result.transcript) == 3


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_roll_2d6_end_to_end() -> None:
    provider = _make_provider(
        [_call("call_1", "roll_dice", {"sides": 6, "count": 2})],
        [_text("You rolled "), _text("a total of 7.")],
    )
    sink = BufferedOutputSink()
    loop = AgenticLoop(provider=provider, registry=_dice_registry())

    result = await loop.run([{"role": "user", "content": "roll 2d6"}], sink)

    assert result.state is LoopState.DONE
    assert result.iterations == 2
    assert sink.text == "You rolled a total of 7."

    updates = [c for c in sink.chunks if c["type"] == "task_update"]
    assert [u["status"] for u in updates] == ["in_progress", "complete"]
    assert updates[0]["title"] == "Rolling a 2d6..."
    assert updates[1]["id"] == "call_1"
    assert updates[1]["title"].startswith("Rolled a 2d6 to total ")

    # Status updates precede the final answer text.
    first_text = next(i for i, c in enumerate(sink.chunks) if c["type"] == "markdown_text")
    assert sink.chunks.index(updates[1]) < first_text


@pytest.mark.anyio
async def test_tool_call_and_result_appended_to_next_transcript() -> None:
    provider = _make_provider(
        [_call("call_1", "roll_dice", {"sides": 20, "count": 3})],
        [_text("ok")],
    )

    await AgenticLoop(provider=provider, registry=_dice_registry()).run(
        [{"role": "user", "content": "roll 3d20"}], BufferedOutputSink()
    )

    second = _sent_messages(provider, 1)
    assert second[0] == {"role": "user", "content": "roll 3d20"}
    assert second[1] == {
        "type": "function_call",
        "call_id": "call_1",
        "name": "roll_dice",
        "arguments": json.dumps({"sides": 20, "count": 3}),
        "id": "fc_call_1",
    }
    assert second[2]["type"] == "function_call_output"
    assert second[2]["call_id"] == "call_1"
    output = json.loads(second[2]["output"])
    assert len(output["rolls"]) == 3
    assert all(1 <= r <= 20 for r in output["rolls"])
    assert output["total"] == sum(output["rolls"])


@pytest.mark.anyio
async def test_batch_of_calls_executed_before_next_stream_in_call_order() -> None:
    # "slow" finishes last but was requested first.
    registry = _echo_registry("slow", "fast", "medium", delay={"slow": 0.05, "medium": 0.01})
    provider = _make_provider(
        [_call("a", "slow", {}), _call("b", "fast", {}), _call("c", "medium", {})],
        [_text("all done")],
    )
    sink = BufferedOutputSink()

    result = await AgenticLoop(provider=provider, registry=registry).run(
        [{"role": "user", "content": "go"}], sink
    )

    assert provider.stream.call_count == 2
    second = _sent_messages(provider, 1)
    new_entries = second[1:]
    assert len(new_entries) == 6
    assert [e["call_id"] for e in new_entries] == ["a", "a", "b", "b", "c", "c"]
    assert [e["type"] for e in new_entries] == [
        "function_call",
        "function_call_output",
    ] * 3
    assert result.transcript == second
    assert sink.task_states == {"a": "complete", "b": "complete", "c": "complete"}


@pytest.mark.anyio
async def test_in_progress_status_emitted_before_stream_ends() -> None:
    seen_during_stream: list[str] = []
    sink = BufferedOutputSink()

    async def _stream_with_probe():
        yield _call("c1", "roll_dice", {"sides": 6, "count": 1})
        seen_during_stream.extend(sink.task_states.values())
        yield _text("thinking")

    provider = MagicMock()
    provider.stream = AsyncMock(side_effect=[_stream_with_probe(), _aiter([_text("done")])])

    await AgenticLoop(provider=provider, registry=_dice_registry()).run([], sink)

    assert seen_during_stream == ["in_progress"]


@pytest.mark.anyio
async def test_multiple_tool_iterations() -> None:
    provider = _make_provider(
        [_call("c1", "roll_dice", {"sides": 6, "count": 1})],
        [_call("c2", "roll_dice", {"sides": 8, "count": 1})],
        [_text("Two rolls done.")],
    )

    result = await AgenticLoop(provider=provider, registry=_dice_registry()).run(
        [], BufferedOutputSink()
    )

    assert result.iterations == 3
    assert result.text == "Two rolls done."
    assert len(_sent_messages(provider, 2)) == 4


# ---------------------------------------------------------------------------
# Tool failures are recoverable
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_invalid_dice_reported_as_error_and_loop_continues() -> None:
    provider = _make_provider(
        [_call("c1", "roll_dice", {"sides": 1, "count": 1})],
        [_text("A die needs two sides.")],
    )
    sink = BufferedOutputSink()

    result = await AgenticLoop(provider=provider, registry=_dice_registry()).run([], sink)

    assert result.text == "A die needs two sides."
    assert sink.task_states == {"c1": "error"}
    final = [c for c in sink.chunks if c["type"] == "task_update"][-1]
    assert final["title"] == "A die must have at least 2 sides"
    output = json.loads(_sent_messages(provider, 1)[-1]["output"])
    assert output == {"error": "A die must have at least 2 sides", "rolls": [], "total": 0}


@pytest.mark.anyio
async def test_unknown_tool_becomes_failure_result() -> None:
    provider = _make_provider([_call("c1", "launch_rocket", {})], [_text("Can't do that.")])
    sink = BufferedOutputSink()

    await AgenticLoop(provider=provider, registry=_dice_registry()).run([], sink)

    output = json.loads(_sent_messages(provider, 1)[-1]["output"])
    assert "Unknown tool" in output["error"]
    assert sink.task_states == {"c1": "error"}


@pytest.mark.anyio
async def test_malformed_arguments_become_failure_result() -> None:
    provider = _make_provider([_call("c1", "roll_dice", "{not json")], [_text("Oops.")])

    await AgenticLoop(provider=provider, registry=_dice_registry()).run(
        [], BufferedOutputSink()
    )

    output = json.loads(_sent_messages(provider, 1)[-1]["output"])
    assert output == {"error": "invalid arguments"}


@pytest.mark.anyio
async def test_raising_tool_does_not_abort_loop() -> None:
    registry = ToolRegistry()

    async def _broken(args: dict[str, Any]) -> Any:
        raise RuntimeError("database down")

    registry.register(
        ToolDefinition(name="lookup", description="Broken", parameters={"type": "object"}),
        _broken,
    )
    provider = _make_provider([_call("c1", "lookup", {})], [_text("Sorry.")])

    result = await AgenticLoop(provider=provider, registry=registry).run(
        [], BufferedOutputSink()
    )

    assert result.text == "Sorry."
    output = json.loads(_sent_messages(provider, 1)[-1]["output"])
    assert output == {"error": "Tool 'lookup' failed unexpectedly"}


# ---------------------------------------------------------------------------
# Fatal failures
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_backend_open_failure_propagates() -> None:
    provider = MagicMock()
    provider.stream = AsyncMock(side_effect=BackendAPIError("unauthorized", status_code=401))
    sink = BufferedOutputSink()

    with pytest.raises(BackendAPIError):
        await AgenticLoop(provider=provider, registry=_dice_registry()).run([], sink)

    assert sink.chunks == []


@pytest.mark.anyio
async def test_sink_failure_raises_output_sink_error() -> None:
    provider = _make_provider([_text("hello")])
    sink = MagicMock()
    sink.append_text = AsyncMock(side_effect=ConnectionResetError("socket closed"))

    with pytest.raises(OutputSinkError, match="socket closed"):
        await AgenticLoop(provider=provider, registry=_dice_registry()).run([], sink)


@pytest.mark.anyio
async def test_raises_on_max_iterations_exceeded() -> None:
    """Loop must stop if the LLM never stops calling tools."""
    provider = MagicMock()
    provider.stream = AsyncMock(
        side_effect=lambda *a: _aiter([_call("c1", "roll_dice", {"sides": 6, "count": 1})])
    )

    loop = AgenticLoop(provider=provider, registry=_dice_registry(), max_iterations=3)

    with pytest.raises(MaxIterationsExceededError, match="max_iterations"):
        await loop.run([], BufferedOutputSink())

    assert provider.stream.call_count == 3


@pytest.mark.anyio
async def test_cancellation_stops_tool_execution_and_further_calls() -> None:
    started = asyncio.Event()
    registry = ToolRegistry()

    async def _hang(args: dict[str, Any]) -> Any:
        started.set()
        await asyncio.sleep(10)

    registry.register(
        ToolDefinition(name="hang", description="Hangs", parameters={"type": "object"}),
        _hang,
    )
    provider = _make_provider([_call("c1", "hang", {})], [_text("never")])
    loop = AgenticLoop(provider=provider, registry=registry)

    task = asyncio.create_task(loop.run([], BufferedOutputSink()))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert provider.stream.call_count == 1


@pytest.mark.anyio
async def test_task_status_uses_enum_values() -> None:
    provider = _make_provider([_call("c1", "roll_dice", {"sides": 6, "count": 1})], [_text("k")])
    sink = MagicMock()
    sink.append_text = AsyncMock()
    sink.update_task_status = AsyncMock()

    await AgenticLoop(provider=provider, registry=_dice_registry()).run([], sink)

    statuses = [c.args[2] for c in sink.update_task_status.call_args_list]
    assert statuses == [TaskStatus.IN_PROGRESS, TaskStatus.COMPLETE]
