"""
AgenticLoop — the streaming tool-calling engine for relaybot.

One ``run()`` call answers one user turn:

1. **STREAMING** — open a streaming completion with the transcript and every
   registered tool declaration.  Text deltas go straight to the output sink;
   completed tool calls get an ``in_progress`` task update and are queued.
2. **EXECUTING_TOOLS** — once the stream ends, run the queued calls as one
   concurrent batch, wait for all of them, then append each call and its
   result to the transcript in the order the model issued them.
3. Back to STREAMING with the extended transcript, until a stream ends
   without tool calls (**DONE**).

The loop owns a copy of the transcript; the caller's list is never mutated.
It never calls ``sink.finish()`` — ending the turn is the caller's job.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Sequence

from relaybot.conversation.errors import MaxIterationsExceededError, OutputSinkError
from relaybot.conversation.providers import LLMProvider, ToolCall, ToolResult
from relaybot.conversation.sink import OutputSink, TaskStatus
from relaybot.conversation.stream import EndOfStream, TextDelta, ToolCallCompleted, iter_stream_events
from relaybot.conversation.tools.executor import ToolExecutor
from relaybot.conversation.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    STREAMING = "streaming"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


@dataclass
class LoopResult:
    """Outcome of one ``AgenticLoop.run()``.

    Attributes:
        text: Every text delta of the turn, concatenated in arrival order.
        transcript: The caller's transcript plus all call/result entries.
        iterations: Number of streaming calls made.
        state: Terminal state (always ``LoopState.DONE``).
    """

    text: str
    transcript: list[dict[str, Any]] = field(default_factory=list)
    iterations: int = 0
    state: LoopState = LoopState.DONE


class AgenticLoop:
    """Executes the streaming LLM + tool-calling loop for a single turn.

    The loop holds configuration only, so one instance can serve many
    concurrent turns.

    Typical usage::

        loop = AgenticLoop(provider=my_provider, registry=my_registry)
        result = await loop.run(
            [{"role": "user", "content": "roll 2d6"}],
            sink=my_sink,
        )

    Attributes:
        provider: The streaming LLM backend.
        registry: Tools declared to the model on every call.
        executor: Runs the tool calls (defaults to a ``ToolExecutor`` over
            *registry*).
        max_iterations: Maximum number of streaming calls per turn, or
            ``None`` for no limit.  Default: 10.
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        executor: ToolExecutor | None = None,
        max_iterations: int | None = 10,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.executor = executor or ToolExecutor(registry)
        self.max_iterations = max_iterations

    async def run(
        self,
        transcript: Sequence[dict[str, Any]],
        sink: OutputSink,
    ) -> LoopResult:
        """Run one conversation turn through the agentic loop.

        Args:
            transcript: Ordered conversation so far, ending with the user's
                message.  Not mutated.
            sink: Receives text deltas and task status updates.

        Returns:
            A ``LoopResult`` in state ``DONE``.

        Raises:
            BackendConnectionError: If a streaming call cannot be opened or
                fails mid-stream.
            OutputSinkError: If the sink fails to accept an update.
            MaxIterationsExceededError: If the model is still calling tools
                after ``max_iterations`` streaming calls.
        """
        messages: list[dict[str, Any]] = list(transcript)
        definitions = self.registry.get_definitions()
        parts: list[str] = []
        turn_start = time.monotonic()

        iteration = 0
        while True:
            iteration += 1
            if self.max_iterations is not None and iteration > self.max_iterations:
                raise MaxIterationsExceededError(
                    f"AgenticLoop exceeded max_iterations={self.max_iterations} "
                    "without reaching a final response. Check for tool call loops."
                )

            state = LoopState.STREAMING
            logger.debug("Agentic loop iteration %d (%s)", iteration, state.value)

            llm_t0 = time.monotonic()
            raw_events = await self.provider.stream(list(messages), definitions)
            pending: list[ToolCall] = []

            async for event in iter_stream_events(raw_events):
                if isinstance(event, TextDelta):
                    parts.append(event.text)
                    await self._emit(sink.append_text(event.text))
                elif isinstance(event, ToolCallCompleted):
                    await self._emit(
                        sink.update_task_status(
                            event.call.call_id,
                            self.executor.describe(event.call),
                            TaskStatus.IN_PROGRESS,
                        )
                    )
                elif isinstance(event, EndOfStream):
                    pending = list(event.tool_calls)

            logger.debug(
                "LLM stream %d took %.3fs (tool_calls=%d)",
                iteration,
                time.monotonic() - llm_t0,
                len(pending),
            )

            if not pending:
                state = LoopState.DONE
                logger.info(
                    "Loop complete after %d iteration(s) in %.3fs",
                    iteration,
                    time.monotonic() - turn_start,
                )
                return LoopResult(
                    text="".join(parts),
                    transcript=messages,
                    iterations=iteration,
                    state=state,
                )

            state = LoopState.EXECUTING_TOOLS
            logger.debug("Agentic loop iteration %d (%s)", iteration, state.value)
            tools_t0 = time.monotonic()
            results = await self._execute_batch(pending)
            logger.debug(
                "Executed %d tool(s) concurrently in %.3fs",
                len(pending),
                time.monotonic() - tools_t0,
            )

            for call, result in zip(pending, results):
                messages.append(call.to_input_item())
                messages.append(result.to_input_item())
                await self._emit(
                    sink.update_task_status(
                        call.call_id,
                        _result_title(call, result),
                        TaskStatus.COMPLETE if result.ok else TaskStatus.ERROR,
                    )
                )

    async def _execute_batch(self, calls: list[ToolCall]) -> list[ToolResult]:
        """Run *calls* concurrently; results come back in call order."""
        return list(await asyncio.gather(*(self.executor.execute(c) for c in calls)))

    @staticmethod
    async def _emit(update: Awaitable[None]) -> None:
        try:
            await update
        except OutputSinkError:
            raise
        except Exception as exc:
            raise OutputSinkError(f"Output sink update failed: {exc}") from exc


def _result_title(call: ToolCall, result: ToolResult) -> str:
    if not result.ok:
        return result.error or f"{call.name} failed"
    if isinstance(result.value, dict) and result.value.get("description"):
        return str(result.value["description"])
    return f"Finished {call.name}"
