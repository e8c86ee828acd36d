"""
Output sinks: where streamed text and task status updates go.

The ``AgenticLoop`` only depends on the narrow ``OutputSink`` protocol.
Updates are modelled as chunks in the shape the messaging surface renders:

- ``{"type": "markdown_text", "text": ...}``
- ``{"type": "task_update", "id": ..., "title": ..., "status": ..., "details": ...}``
- ``{"type": "stop"}`` once the turn is finished.

Sink calls are never retried by the core: retrying ``append_text`` would
duplicate visible text.
"""

from __future__ import annotations

import asyncio
import sys
from enum import Enum
from typing import Any, AsyncIterator, Protocol, TextIO, runtime_checkable

from relaybot.conversation.errors import OutputSinkError


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ERROR = "error"


OPEN_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})


def text_chunk(text: str) -> dict[str, Any]:
    return {"type": "markdown_text", "text": text}


def task_chunk(
    task_id: str,
    title: str,
    status: TaskStatus,
    details: str | None = None,
) -> dict[str, Any]:
    chunk: dict[str, Any] = {
        "type": "task_update",
        "id": task_id,
        "title": title,
        "status": TaskStatus(status).value,
    }
    if details is not None:
        chunk["details"] = details
    return chunk


@runtime_checkable
class OutputSink(Protocol):
    """Protocol for the messaging surface a turn is rendered on."""

    async def append_text(self, delta: str) -> None:
        """Append *delta* to the visible answer, in call order."""
        ...

    async def update_task_status(
        self,
        task_id: str,
        title: str,
        status: TaskStatus,
        details: str | None = None,
    ) -> None:
        """Show or overwrite the status of task *task_id*."""
        ...

    async def finish(self, trailing_text: str | None = None) -> None:
        """Mark the turn complete; no further calls are valid afterwards."""
        ...


class _FinishGuard:
    """Mixin rejecting sink calls made after ``finish``."""

    _finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def _check_open(self) -> None:
        if self._finished:
            raise OutputSinkError("Output sink already finished for this turn.")


class BufferedOutputSink(_FinishGuard):
    """Records every chunk in memory.

    Attributes:
        chunks: All chunks in the order they were emitted.
    """

    def __init__(self) -> None:
        self.chunks: list[dict[str, Any]] = []

    async def append_text(self, delta: str) -> None:
        self._check_open()
        self.chunks.append(text_chunk(delta))

    async def update_task_status(
        self,
        task_id: str,
        title: str,
        status: TaskStatus,
        details: str | None = None,
    ) -> None:
        self._check_open()
        self.chunks.append(task_chunk(task_id, title, status, details))

    async def finish(self, trailing_text: str | None = None) -> None:
        self._check_open()
        if trailing_text:
            self.chunks.append(text_chunk(trailing_text))
        self.chunks.append({"type": "stop"})
        self._finished = True

    @property
    def text(self) -> str:
        """All visible text, concatenated."""
        return "".join(c["text"] for c in self.chunks if c["type"] == "markdown_text")

    @property
    def task_states(self) -> dict[str, str]:
        """Latest status per task id."""
        states: dict[str, str] = {}
        for chunk in self.chunks:
            if chunk["type"] == "task_update":
                states[chunk["id"]] = chunk["status"]
        return states


class QueueOutputSink(_FinishGuard):
    """Feeds chunks to an ``asyncio.Queue`` drained by the HTTP response."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._closed = False

    async def append_text(self, delta: str) -> None:
        self._check_open()
        await self._queue.put(text_chunk(delta))

    async def update_task_status(
        self,
        task_id: str,
        title: str,
        status: TaskStatus,
        details: str | None = None,
    ) -> None:
        self._check_open()
        await self._queue.put(task_chunk(task_id, title, status, details))

    async def finish(self, trailing_text: str | None = None) -> None:
        self._check_open()
        if trailing_text:
            await self._queue.put(text_chunk(trailing_text))
        await self._queue.put({"type": "stop"})
        self._finished = True

    def close(self) -> None:
        """End ``chunks()`` once everything queued so far has been read."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def chunks(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk


class StatusTrackingSink:
    """Wraps a sink and remembers which tasks are still open.

    Used by the conversation entity so a failed turn never leaves a task
    indicator spinning in ``in_progress``.
    """

    def __init__(self, inner: OutputSink) -> None:
        self._inner = inner
        self._open: dict[str, str] = {}

    @property
    def open_tasks(self) -> dict[str, str]:
        """``{task_id: title}`` of tasks still pending or in progress."""
        return dict(self._open)

    async def append_text(self, delta: str) -> None:
        await self._inner.append_text(delta)

    async def update_task_status(
        self,
        task_id: str,
        title: str,
        status: TaskStatus,
        details: str | None = None,
    ) -> None:
        await self._inner.update_task_status(task_id, title, status, details)
        if TaskStatus(status) in OPEN_STATUSES:
            self._open[task_id] = title
        else:
            self._open.pop(task_id, None)

    async def finish(self, trailing_text: str | None = None) -> None:
        await self._inner.finish(trailing_text)


class ConsoleOutputSink(_FinishGuard):
    """Renders a turn on a terminal (used by ``relaybot-server chat``)."""

    _MARKERS = {
        TaskStatus.PENDING: "…",
        TaskStatus.IN_PROGRESS: "⏳",
        TaskStatus.COMPLETE: "✓",
        TaskStatus.ERROR: "✗",
    }

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._mid_line = False

    def _newline(self) -> None:
        if self._mid_line:
            self._stream.write("\n")
            self._mid_line = False

    async def append_text(self, delta: str) -> None:
        self._check_open()
        self._stream.write(delta)
        self._stream.flush()
        self._mid_line = not delta.endswith("\n")

    async def update_task_status(
        self,
        task_id: str,
        title: str,
        status: TaskStatus,
        details: str | None = None,
    ) -> None:
        self._check_open()
        self._newline()
        self._stream.write(f"  [{self._MARKERS[TaskStatus(status)]}] {title}\n")
        if details:
            self._stream.write(f"      {details}\n")
        self._stream.flush()

    async def finish(self, trailing_text: str | None = None) -> None:
        self._check_open()
        if trailing_text:
            self._newline()
            self._stream.write(trailing_text)
            self._mid_line = True
        self._newline()
        self._stream.flush()
        self._finished = True
