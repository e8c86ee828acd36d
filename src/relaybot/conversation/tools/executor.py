"""
Tool executor: runs one ``ToolCall`` and always comes back with a
``ToolResult``.

Every failure mode short of cancellation is folded into a failed result so
the model can explain it to the user:

=========================  ==============================================
Failure                    Result message
=========================  ==============================================
unknown tool               ``Unknown tool: '<name>'``
unparseable arguments      ``invalid arguments``
argument model mismatch    ``invalid arguments: <field>: <reason>``
``ToolArgumentError``      the handler's own message, verbatim
timeout                    ``Tool '<name>' timed out after <n>s``
anything else              ``Tool '<name>' failed unexpectedly``
=========================  ==============================================
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from pydantic import ValidationError

from relaybot.conversation.errors import (
    ToolArgumentError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from relaybot.conversation.providers import ToolCall, ToolResult
from relaybot.conversation.tools.registry import RegisteredTool, ToolRegistry

logger = logging.getLogger(__name__)


def parse_arguments(raw: str) -> dict[str, Any]:
    """Decode the raw argument payload of a call.

    Raises:
        ToolArgumentError: If *raw* is not a JSON object.
    """
    if not raw or not raw.strip():
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ToolArgumentError("invalid arguments") from exc
    if not isinstance(args, dict):
        raise ToolArgumentError("invalid arguments")
    return args


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return "invalid arguments: " + "; ".join(parts)


class ToolExecutor:
    """Executes tool calls against a ``ToolRegistry``.

    Attributes:
        registry: Where tools are looked up.
        timeout: Maximum seconds per tool call; ``None`` disables the timeout.
    """

    def __init__(self, registry: ToolRegistry, timeout: float | None = 30.0) -> None:
        self.registry = registry
        self.timeout = timeout

    def describe(self, call: ToolCall) -> str:
        """Return the in-progress title for *call*; never raises."""
        default = f"Running {call.name}…"
        try:
            entry = self.registry.lookup(call.name)
        except ToolNotFoundError:
            return default
        if entry.progress_title is None:
            return default
        try:
            return entry.progress_title(self._prepare(entry, call.arguments))
        except Exception:
            return default

    async def execute(self, call: ToolCall) -> ToolResult:
        """Run *call* and wrap its outcome.

        ``asyncio.CancelledError`` is the only exception that propagates.
        """
        try:
            entry = self.registry.lookup(call.name)
        except ToolNotFoundError as exc:
            logger.warning("Unknown tool requested: %r", call.name)
            return ToolResult.failure(call.call_id, str(exc))

        t0 = time.monotonic()
        try:
            args = self._prepare(entry, call.arguments)
            value = await self._invoke(entry, args)
        except ToolArgumentError as exc:
            logger.info("Tool %r rejected its arguments: %s", call.name, exc)
            return ToolResult.failure(call.call_id, str(exc), exc.payload)
        except ToolTimeoutError as exc:
            logger.warning("%s", exc)
            return ToolResult.failure(call.call_id, str(exc))
        except ToolExecutionError as exc:
            logger.error("Tool %r failed: %s", call.name, exc, exc_info=True)
            return ToolResult.failure(call.call_id, f"Tool {call.name!r} failed unexpectedly")

        logger.debug("Tool %r finished in %.3fs", call.name, time.monotonic() - t0)
        return ToolResult.success(call.call_id, value)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _prepare(self, entry: RegisteredTool, raw: str) -> dict[str, Any]:
        args = parse_arguments(raw)
        if entry.arguments_model is None:
            return args
        try:
            model = entry.arguments_model.model_validate(args)
        except ValidationError as exc:
            raise ToolArgumentError(_format_validation_error(exc)) from exc
        return model.model_dump()

    async def _invoke(self, entry: RegisteredTool, args: dict[str, Any]) -> Any:
        if self.timeout is None:
            return await self._call_handler(entry, args)
        try:
            return await asyncio.wait_for(self._call_handler(entry, args), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ToolTimeoutError(
                f"Tool {entry.name!r} timed out after {self.timeout:g}s"
            ) from exc

    @staticmethod
    async def _call_handler(entry: RegisteredTool, args: dict[str, Any]) -> Any:
        # Handler failures leave here wrapped; only wait_for raises TimeoutError.
        try:
            return await entry.handler(args)
        except ToolArgumentError:
            raise
        except Exception as exc:
            raise ToolExecutionError(f"{type(exc).__name__}: {exc}") from exc
