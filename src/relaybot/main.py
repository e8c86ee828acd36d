"""
relaybot - Main Entry Point.

Wires settings, the tool registry, the LLM provider and the conversation
entity together, then either serves the HTTP API or runs an interactive
terminal chat.

Architecture:
    - config.py: Configuration management
    - conversation/tools/: Tool registry, executor, built-in tools
    - conversation/loop.py: Streaming agentic loop
    - conversation/entity.py: Turn handling and history
    - conversation/server.py: HTTP API
    - main.py: Orchestration and entry point
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid

from relaybot.config import Settings, get_settings
from relaybot.conversation.entity import ConversationEntity, ConversationInput
from relaybot.conversation.providers import OpenAIResponsesProvider
from relaybot.conversation.sink import ConsoleOutputSink
from relaybot.conversation.tools.dice import DiceTool
from relaybot.conversation.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def build_registry() -> ToolRegistry:
    """Create the process-wide tool registry."""
    registry = ToolRegistry()
    DiceTool().register(registry)
    return registry


def build_entity(settings: Settings) -> ConversationEntity:
    """Create a ``ConversationEntity`` from *settings*."""
    provider = OpenAIResponsesProvider(
        model=settings.model,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
    )
    return ConversationEntity(
        provider=provider,
        registry=build_registry(),
        system_prompt=settings.system_prompt,
        max_iterations=settings.iteration_limit,
        tool_timeout=settings.tool_timeout,
        turn_timeout=settings.turn_timeout,
        max_history_turns=settings.max_history_turns,
        auto_create_conversation_id=settings.auto_create_conversation_id,
    )


async def run_rest_server(settings: Settings) -> None:
    """Serve the conversation API until interrupted."""
    from relaybot.conversation.server import create_conversation_app
    import uvicorn

    app = create_conversation_app(build_entity(settings))
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    logger.info("Starting REST API server on %s:%d", settings.host, settings.port)
    await server.serve()


async def run_chat(settings: Settings) -> None:
    """Interactive terminal chat; one session until EOF or ``exit``."""
    entity = build_entity(settings)
    conversation_id = str(uuid.uuid4())
    loop = asyncio.get_running_loop()

    print(f"relaybot chat ({settings.model}). Type 'exit' to quit.")
    while True:
        try:
            text = await loop.run_in_executor(None, input, "\nyou> ")
        except EOFError:
            break
        text = text.strip()
        if not text:
            continue
        if text.lower() in {"exit", "quit"}:
            break
        sys.stdout.write("bot> ")
        await entity.async_process(
            ConversationInput(text=text, conversation_id=conversation_id),
            ConsoleOutputSink(sys.stdout),
        )


def cli_main() -> None:
    """Entry point for the relaybot-server console script."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="relaybot streaming chat assistant")
    parser.add_argument(
        "mode",
        nargs="?",
        choices=["serve", "chat"],
        default="serve",
        help="Serve the HTTP API (default) or chat in the terminal",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=settings.host,
        help=f"Bind address (default: {settings.host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"HTTP port (default: {settings.port})",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=settings.model,
        help=f"LLM model identifier (default: {settings.model})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    settings.host = args.host
    settings.port = args.port
    settings.model = args.model
    if args.debug:
        settings.log_level = "DEBUG"

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.mode == "chat":
            asyncio.run(run_chat(settings))
        else:
            asyncio.run(run_rest_server(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    cli_main()
