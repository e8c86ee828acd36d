"""
relaybot conversation package.

Implements the streaming agentic loop (text deltas out as they arrive, tool
calls executed in batches between model calls), the output sink abstraction
it renders through, and the conversation entity / HTTP server around it.
"""

from relaybot.conversation.entity import (
    ConversationEntity,
    ConversationInput,
    ConversationResult,
)
from relaybot.conversation.errors import (
    BackendConnectionError,
    MaxIterationsExceededError,
    OutputSinkError,
    RelayError,
)
from relaybot.conversation.loop import AgenticLoop, LoopResult, LoopState
from relaybot.conversation.providers import (
    LLMProvider,
    OpenAIResponsesProvider,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from relaybot.conversation.sink import BufferedOutputSink, OutputSink, TaskStatus

__all__ = [
    "AgenticLoop",
    "BackendConnectionError",
    "BufferedOutputSink",
    "ConversationEntity",
    "ConversationInput",
    "ConversationResult",
    "LLMProvider",
    "LoopResult",
    "LoopState",
    "MaxIterationsExceededError",
    "OpenAIResponsesProvider",
    "OutputSink",
    "OutputSinkError",
    "RelayError",
    "TaskStatus",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
]
