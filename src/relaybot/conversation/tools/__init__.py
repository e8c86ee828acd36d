"""
Tools for the relaybot agentic loop.

- ``ToolRegistry`` maps tool names to definitions and async handlers.
- ``ToolExecutor`` runs a ``ToolCall`` and always returns a ``ToolResult``.
- ``DiceTool`` is the built-in example tool (``roll_dice``).

Quick-start example::

    from relaybot.conversation.tools import DiceTool, ToolExecutor, ToolRegistry

    registry = ToolRegistry()
    DiceTool().register(registry)
    executor = ToolExecutor(registry, timeout=10.0)
"""

from relaybot.conversation.tools.dice import DiceTool, roll_dice
from relaybot.conversation.tools.executor import ToolExecutor
from relaybot.conversation.tools.registry import AsyncToolHandler, RegisteredTool, ToolRegistry

__all__ = [
    "AsyncToolHandler",
    "DiceTool",
    "RegisteredTool",
    "ToolExecutor",
    "ToolRegistry",
    "roll_dice",
]
