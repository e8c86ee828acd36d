"""
ConversationEntity — one user message in, one streamed turn out.

This is the layer the messaging surface talks to.  It builds the transcript
(system prompt, the thread's recent history, the new message), runs the
``AgenticLoop`` against the caller's output sink, and owns the end of the
turn:

- on success the sink is finished and the exchange is saved to the
  ``ConversationStore``;
- on a fatal failure (backend unreachable, iteration limit, turn timeout,
  unexpected error) every task indicator still open is flipped to ``error``
  and the turn ends with an apology;
- if the sink itself fails the turn simply ends; nothing is re-raised.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from relaybot.conversation.errors import (
    BackendAPIError,
    BackendConnectionError,
    BackendRateLimitError,
    MaxIterationsExceededError,
    OutputSinkError,
)
from relaybot.conversation.loop import AgenticLoop
from relaybot.conversation.providers import LLMProvider
from relaybot.conversation.sink import OutputSink, StatusTrackingSink, TaskStatus
from relaybot.conversation.store import ConversationStore, InMemoryConversationStore
from relaybot.conversation.tools.executor import ToolExecutor
from relaybot.conversation.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You're an assistant in a team chat workspace. "
    "Users will ask you to help them write something or to think through a topic. "
    "Respond professionally and format your answers as markdown. "
    "Use the available tools when they help answer the request."
)

_APOLOGY_GENERIC = "I'm sorry, something went wrong while answering. Please try again."
_APOLOGY_STUCK = "I'm sorry, I got stuck trying to answer that. Please try again."
_APOLOGY_RATE_LIMIT = (
    "I'm sorry, I'm receiving too many requests right now. "
    "Please try again in a moment."
)
_APOLOGY_UNREACHABLE = (
    "I'm sorry, I can't reach my language model right now. Please try again later."
)
_APOLOGY_TIMEOUT = "I'm sorry, that took too long to answer. Please try again."


@dataclass
class ConversationInput:
    """Input to a single conversation turn.

    Attributes:
        text: The user's message.
        conversation_id: Thread / session ID for multi-turn context.
    """

    text: str
    conversation_id: str | None = None


@dataclass
class ConversationResult:
    """Result of a single conversation turn.

    Attributes:
        response_text: The visible answer (or the apology on failure).
        conversation_id: Session ID (echoed or newly created).
        ok: ``False`` when the turn ended on a fatal failure.
        extra: Metadata such as the number of loop iterations.
    """

    response_text: str
    conversation_id: str | None = None
    ok: bool = True
    extra: dict[str, Any] = field(default_factory=dict)


class ConversationEntity:
    """Chat assistant backed by the AgenticLoop.

    Attributes:
        registry: Tools available to the model.
        store: Per-conversation history.
        turn_timeout: Seconds a whole turn may take, or ``None``.
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        store: ConversationStore | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_iterations: int | None = 10,
        tool_timeout: float | None = 30.0,
        turn_timeout: float | None = 120.0,
        max_history_turns: int = 20,
        auto_create_conversation_id: bool = False,
    ) -> None:
        """Initialise the conversation entity.

        Args:
            provider: The streaming LLM backend.
            registry: Tools declared to the model.
            store: History store; defaults to ``InMemoryConversationStore``.
            system_prompt: Instruction text prepended to every turn.
            max_iterations: Max streaming calls per turn (``None`` = no limit).
            tool_timeout: Max seconds per tool call.
            turn_timeout: Max seconds per turn.
            max_history_turns: Number of user/assistant pairs kept in the
                transcript.  ``0`` disables truncation.
            auto_create_conversation_id: Generate a UUID4 session ID when the
                caller supplies none.
        """
        self.registry = registry
        self.store = store if store is not None else InMemoryConversationStore()
        self.system_prompt = system_prompt
        self.turn_timeout = turn_timeout
        self.max_history_turns = max_history_turns
        self.auto_create_conversation_id = auto_create_conversation_id
        self._loop = AgenticLoop(
            provider=provider,
            registry=registry,
            executor=ToolExecutor(registry, timeout=tool_timeout),
            max_iterations=max_iterations,
        )

    def _truncate_history(self, history: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Return the last ``max_history_turns`` user/assistant pairs of *history*."""
        if self.max_history_turns == 0:
            return list(history)
        keep = self.max_history_turns * 2
        if len(history) > keep:
            logger.debug(
                "History window: dropping %d oldest message(s) to stay within "
                "max_history_turns=%d",
                len(history) - keep,
                self.max_history_turns,
            )
            return history[-keep:]
        return list(history)

    def build_transcript(
        self, user_text: str, history: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        transcript: list[dict[str, Any]] = []
        if self.system_prompt:
            transcript.append({"role": "system", "content": self.system_prompt})
        transcript.extend(history)
        transcript.append({"role": "user", "content": user_text})
        return transcript

    async def async_process(
        self, user_input: ConversationInput, sink: OutputSink
    ) -> ConversationResult:
        """Process one conversation turn, rendering it on *sink*.

        Args:
            user_input: The user's message and session context.
            sink: Where the streamed answer and task updates are rendered.

        Returns:
            A ``ConversationResult``; fatal failures are reported through
            ``ok=False`` rather than raised.
        """
        conv_id = user_input.conversation_id
        if conv_id is None and self.auto_create_conversation_id:
            conv_id = str(uuid.uuid4())
            logger.debug("Auto-created conversation_id=%r", conv_id)

        history = self._truncate_history(self.store.get(conv_id)) if conv_id else []
        transcript = self.build_transcript(user_input.text, history)
        tracked = StatusTrackingSink(sink)

        logger.info(
            "Processing conversation turn: id=%r, text_len=%d, history_len=%d",
            conv_id,
            len(user_input.text),
            len(history),
        )
        logger.debug("User text for conversation id=%r: %r", conv_id, user_input.text)

        try:
            result = await asyncio.wait_for(
                self._loop.run(transcript, tracked), timeout=self.turn_timeout
            )
        except OutputSinkError as exc:
            logger.error("Output sink failed for conversation id=%r: %s", conv_id, exc)
            return ConversationResult(response_text="", conversation_id=conv_id, ok=False)
        except MaxIterationsExceededError as exc:
            logger.error("Iteration limit hit for conversation id=%r: %s", conv_id, exc)
            apology = _APOLOGY_STUCK
        except BackendRateLimitError as exc:
            logger.warning("LLM rate limit hit for conversation id=%r: %s", conv_id, exc)
            apology = _APOLOGY_RATE_LIMIT
        except BackendAPIError as exc:
            logger.error(
                "LLM API error for conversation id=%r (status=%s): %s",
                conv_id,
                exc.status_code,
                exc,
            )
            apology = _APOLOGY_GENERIC
        except BackendConnectionError as exc:
            logger.error("LLM connection error for conversation id=%r: %s", conv_id, exc)
            apology = _APOLOGY_UNREACHABLE
        except asyncio.TimeoutError:
            logger.error(
                "Turn for conversation id=%r exceeded %ss", conv_id, self.turn_timeout
            )
            apology = _APOLOGY_TIMEOUT
        except Exception as exc:
            logger.error(
                "Unexpected error in agentic loop for conversation id=%r: %s",
                conv_id,
                exc,
                exc_info=True,
            )
            apology = _APOLOGY_GENERIC
        else:
            try:
                await tracked.finish()
            except Exception as exc:
                logger.error("Could not finish turn for conversation id=%r: %s", conv_id, exc)

            if conv_id is not None:
                updated = list(history)
                updated.append({"role": "user", "content": user_input.text})
                updated.append({"role": "assistant", "content": result.text})
                self.store.save(conv_id, updated)

            logger.info(
                "Conversation turn complete: id=%r, iterations=%d",
                conv_id,
                result.iterations,
            )
            return ConversationResult(
                response_text=result.text,
                conversation_id=conv_id,
                extra={"iterations": result.iterations},
            )

        await self._fail_turn(tracked, apology)
        return ConversationResult(response_text=apology, conversation_id=conv_id, ok=False)

    async def _fail_turn(self, sink: StatusTrackingSink, apology: str) -> None:
        """Close every open task indicator and end the turn with *apology*."""
        try:
            for task_id, title in sink.open_tasks.items():
                await sink.update_task_status(task_id, title, TaskStatus.ERROR)
            await sink.finish(apology)
        except Exception as exc:
            logger.error("Could not report failed turn to the output sink: %s", exc)

    def clear_history(self, conversation_id: str) -> None:
        self.store.clear(conversation_id)

    def clear_all_history(self) -> None:
        self.store.clear_all()
