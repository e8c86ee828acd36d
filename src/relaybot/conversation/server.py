"""
HTTP server for ConversationEntity.

Stands in for the messaging platform: each turn's output sink is streamed
back to the client as newline-delimited JSON, one object per chunk, in the
same shapes the chat surface renders (``markdown_text``, ``task_update``,
``stop``).  A final ``result`` line reports the conversation ID and whether
the turn succeeded.

Endpoints
---------
POST   /conversation             Process one conversation turn (NDJSON stream).
DELETE /conversation/{id}        Clear history for a session.
DELETE /conversation             Clear all session histories.
GET    /health                   Health / readiness check.

Usage (standalone)::

    from relaybot.conversation.server import create_conversation_app
    import uvicorn

    app = create_conversation_app(entity)
    uvicorn.run(app, host="0.0.0.0", port=8080)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from relaybot.conversation.entity import ConversationEntity, ConversationInput
from relaybot.conversation.sink import QueueOutputSink

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class ConversationRequest(BaseModel):
    """Body for POST /conversation."""

    text: str = Field(..., min_length=1, description="The user's message.")
    conversation_id: str | None = Field(
        default=None,
        description="Session ID for multi-turn context. Omit for single-turn.",
    )


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    tools: list[str]
    active_sessions: int


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_conversation_app(entity: ConversationEntity) -> FastAPI:
    """Create a FastAPI application wrapping *entity*.

    Args:
        entity: A fully initialised ``ConversationEntity``.

    Returns:
        A configured ``FastAPI`` application ready to be served or used in
        tests via ``httpx.AsyncClient(transport=ASGITransport(app=app))``.
    """
    app = FastAPI(
        title="relaybot Conversation API",
        description="Streams agentic loop turns as newline-delimited JSON chunks.",
        version="0.1.0",
    )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Return server health and entity status."""
        return HealthResponse(
            status="ok",
            tools=entity.registry.names(),
            active_sessions=len(entity.store),
        )

    @app.post("/conversation")
    async def process_conversation(body: ConversationRequest) -> StreamingResponse:
        """Run one turn and stream its chunks back as NDJSON."""
        logger.info(
            "POST /conversation: text_len=%d conversation_id=%r",
            len(body.text),
            body.conversation_id,
        )

        sink = QueueOutputSink()
        user_input = ConversationInput(text=body.text, conversation_id=body.conversation_id)
        task = asyncio.create_task(entity.async_process(user_input, sink))
        task.add_done_callback(lambda _t: sink.close())

        async def _body() -> AsyncIterator[str]:
            try:
                async for chunk in sink.chunks():
                    yield json.dumps(chunk) + "\n"
                result = await task
            finally:
                if not task.done():
                    logger.info("Client went away; cancelling turn")
                    task.cancel()
            yield json.dumps(
                {
                    "type": "result",
                    "conversation_id": result.conversation_id,
                    "ok": result.ok,
                }
            ) + "\n"

        return StreamingResponse(_body(), media_type=NDJSON_MEDIA_TYPE)

    @app.delete("/conversation/{conversation_id}", status_code=204)
    async def clear_session(conversation_id: str) -> None:
        """Clear the chat history for a specific session."""
        logger.info("DELETE /conversation/%s", conversation_id)
        entity.clear_history(conversation_id)

    @app.delete("/conversation", status_code=204)
    async def clear_all_sessions() -> None:
        """Clear all in-memory session histories."""
        logger.info("DELETE /conversation (all sessions)")
        entity.clear_all_history()

    return app
