"""
Dice-rolling tool for the relaybot agentic loop.

The canonical example tool: it needs no external service and exercises both
the success and the constraint-violation paths of the ``ToolExecutor``.

The ``DiceTool`` class exposes:

- ``DiceTool.TOOL_DEFINITION`` — the ``ToolDefinition`` declared to the
  backend.
- ``roll_dice(sides, count)`` — the pure roll; invalid input returns an
  ``{"error", "rolls": [], "total": 0}`` dict rather than raising.
- ``DiceTool.register(registry)`` — registers the tool with a
  ``ToolRegistry``, together with its argument model and progress title.

Rolls use ``random`` and are not suitable for anything security related.
"""

from __future__ import annotations

import random
from typing import Any

from pydantic import BaseModel

from relaybot.conversation.errors import ToolArgumentError
from relaybot.conversation.providers import ToolDefinition
from relaybot.conversation.tools.registry import RegisteredTool, ToolRegistry

MAX_DICE = 100


def roll_dice(sides: int = 6, count: int = 1, rng: random.Random | None = None) -> dict[str, Any]:
    """Roll *count* dice with *sides* sides each.

    Returns:
        ``{"rolls", "total", "description"}`` on success, or
        ``{"error", "rolls": [], "total": 0}`` when ``sides < 2`` or
        ``count < 1`` or ``count > MAX_DICE``.
    """
    if sides < 2:
        return {"error": "A die must have at least 2 sides", "rolls": [], "total": 0}
    if count < 1:
        return {"error": "Must roll at least 1 die", "rolls": [], "total": 0}
    if count > MAX_DICE:
        return {
            "error": f"Cannot roll more than {MAX_DICE} dice at once",
            "rolls": [],
            "total": 0,
        }

    rng = rng or random
    rolls = [rng.randint(1, sides) for _ in range(count)]
    total = sum(rolls)
    return {
        "rolls": rolls,
        "total": total,
        "description": f"Rolled a {count}d{sides} to total {total}",
    }


class DiceArguments(BaseModel):
    sides: int = 6
    count: int = 1


class DiceTool:
    """Rolls dice on behalf of the model.

    Attributes:
        TOOL_DEFINITION: Declaration sent to the backend.
    """

    TOOL_DEFINITION: ToolDefinition = ToolDefinition(
        name="roll_dice",
        description=(
            "Roll one or more dice with a specified number of sides. Use this when "
            "the user wants to roll dice or generate random numbers within a range."
        ),
        parameters={
            "type": "object",
            "properties": {
                "sides": {
                    "type": "integer",
                    "description": (
                        "The number of sides on the die "
                        "(e.g., 6 for a standard die, 20 for a d20)"
                    ),
                    "default": 6,
                },
                "count": {
                    "type": "integer",
                    "description": "The number of dice to roll",
                    "default": 1,
                    "maximum": MAX_DICE,
                },
            },
            "required": ["sides", "count"],
        },
        strict=False,
    )

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng

    async def __call__(self, args: dict[str, Any]) -> dict[str, Any]:
        result = roll_dice(args.get("sides", 6), args.get("count", 1), rng=self._rng)
        if "error" in result:
            raise ToolArgumentError(result["error"], payload=result)
        return result

    @staticmethod
    def progress_title(args: dict[str, Any]) -> str:
        return f"Rolling a {args.get('count', 1)}d{args.get('sides', 6)}..."

    def register(self, registry: ToolRegistry) -> RegisteredTool:
        """Register this tool with *registry*."""
        return registry.register(
            self.TOOL_DEFINITION,
            self,
            arguments_model=DiceArguments,
            progress_title=self.progress_title,
        )
