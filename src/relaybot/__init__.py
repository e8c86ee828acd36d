"""
relaybot - a chat assistant that streams LLM answers and runs tools mid-turn.

User messages are relayed to an LLM backend (OpenAI Responses API), the
model's output is streamed back chunk by chunk, and tool calls the model
makes along the way (e.g. ``roll_dice``) are executed and fed back until the
model settles on an answer.

Quick Start:
    >>> from relaybot.conversation import AgenticLoop, BufferedOutputSink, OpenAIResponsesProvider
    >>> from relaybot.conversation.tools import DiceTool, ToolRegistry
    >>> registry = ToolRegistry()
    >>> DiceTool().register(registry)
    >>> loop = AgenticLoop(provider=OpenAIResponsesProvider(), registry=registry)
    >>> sink = BufferedOutputSink()
    >>> result = await loop.run([{"role": "user", "content": "roll 2d6"}], sink)
"""

from relaybot.config import Settings, get_settings

__version__ = "0.1.0"
__all__ = ["Settings", "get_settings"]
