"""
Configuration management for relaybot.

This module provides a Settings class that loads configuration from environment
variables (prefix ``RELAYBOT_``) or a ``.env`` file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from relaybot.conversation.entity import DEFAULT_SYSTEM_PROMPT


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8080

    # LLM backend settings
    openai_base_url: str | None = None  # None = SDK default / OPENAI_BASE_URL
    openai_api_key: str | None = None  # None = OPENAI_API_KEY
    model: str = "gpt-4o-mini"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Loop settings
    max_iterations: int = 10  # 0 = no limit
    tool_timeout: float = 30.0
    turn_timeout: float = 120.0

    # Memory settings
    max_history_turns: int = 20
    auto_create_conversation_id: bool = False  # True stores a session per anonymous request

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="RELAYBOT_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def iteration_limit(self) -> int | None:
        """``max_iterations`` as the loop expects it (``None`` = unbounded)."""
        return self.max_iterations or None


def get_settings() -> Settings:
    """Get the application settings instance."""
    return Settings()
