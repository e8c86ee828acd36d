"""
Tool registry for the relaybot agentic loop.

Provides ``ToolRegistry``, a name-keyed table of tool definitions and their
async handlers.  Entries are validated when they are registered, so dispatch
at call time is a plain lookup.

Typical usage::

    from relaybot.conversation.tools.registry import ToolRegistry
    from relaybot.conversation.tools.dice import DiceTool

    registry = ToolRegistry()
    DiceTool().register(registry)

    loop = AgenticLoop(provider=provider, registry=registry)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from relaybot.conversation.errors import DuplicateToolError, ToolNotFoundError
from relaybot.conversation.providers import ToolDefinition

logger = logging.getLogger(__name__)

# Type alias for a single tool handler: async (args_dict) -> structured value
AsyncToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]

# Builds the in-progress title shown while a call runs, from parsed arguments.
ProgressTitle = Callable[[dict[str, Any]], str]


@dataclass(frozen=True)
class RegisteredTool:
    """One registry entry.

    Attributes:
        definition: Declaration sent to the backend.
        handler: Async callable executing the tool.
        arguments_model: Optional pydantic model the raw arguments are
            validated against before the handler runs.
        progress_title: Optional builder for the in-progress status title.
    """

    definition: ToolDefinition
    handler: AsyncToolHandler
    arguments_model: type[BaseModel] | None = None
    progress_title: ProgressTitle | None = None

    @property
    def name(self) -> str:
        return self.definition.name


class ToolRegistry:
    """Registry mapping tool names to their definitions and async handlers.

    Built once at startup and passed to the ``AgenticLoop``; it is only read
    while requests are being served.
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        definition: ToolDefinition,
        handler: AsyncToolHandler,
        *,
        arguments_model: type[BaseModel] | None = None,
        progress_title: ProgressTitle | None = None,
    ) -> RegisteredTool:
        """Register a tool with its async handler.

        Args:
            definition: The tool's ``ToolDefinition``.
            handler: Async callable ``(args: dict) -> value``.
            arguments_model: Optional pydantic model used to validate and
                coerce the arguments.
            progress_title: Optional ``(args) -> str`` for the status title
                shown while the call runs.

        Returns:
            The stored ``RegisteredTool``.

        Raises:
            DuplicateToolError: If a tool with the same name is already registered.
            ValueError: If the definition or handler is malformed.
        """
        if not definition.name:
            raise ValueError("Tool name must not be empty.")
        if definition.name in self._tools:
            raise DuplicateToolError(f"Tool {definition.name!r} is already registered.")
        if not callable(handler):
            raise ValueError(f"Handler for tool {definition.name!r} is not callable.")
        if definition.parameters and definition.parameters.get("type") != "object":
            raise ValueError(
                f"Parameters for tool {definition.name!r} must be a JSON schema "
                "of type 'object'."
            )

        entry = RegisteredTool(
            definition=definition,
            handler=handler,
            arguments_model=arguments_model,
            progress_title=progress_title,
        )
        self._tools[definition.name] = entry
        logger.debug("Registered tool: %r", definition.name)
        return entry

    # ------------------------------------------------------------------
    # Lookup / introspection
    # ------------------------------------------------------------------

    def lookup(self, name: str) -> RegisteredTool:
        """Return the entry for *name*.

        Raises:
            ToolNotFoundError: If no tool with that name is registered.
        """
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(f"Unknown tool: {name!r}") from None

    def get_definitions(self) -> list[ToolDefinition]:
        """Return all registered ``ToolDefinition`` objects (insertion order)."""
        return [entry.definition for entry in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
