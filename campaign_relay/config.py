"""Configuration for the campaign relay."""

import os
from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import model_validator
from pydantic_settings import BaseSettings

# Make ANTHROPIC_API_KEY and friends from .env visible to os.getenv
load_dotenv()


class RelaySettings(BaseSettings):
    """Settings for the relay service.

    Every value can be overridden with a ``CAMPAIGN_RELAY_`` prefixed
    environment variable or an entry in ``.env``.
    """

    # Session store
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "campaign:session:"
    session_ttl_minutes: int = 60

    # LLM Configuration
    anthropic_api_key: str = ""
    llm_model: str = "claude-3-5-haiku-latest"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 2048

    # Scripted completions for local runs (no API calls)
    mock_llm: bool = False

    # HTTP
    host: str = "0.0.0.0"
    port: int = 4000

    model_config = {
        "env_prefix": "CAMPAIGN_RELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def resolve_api_key(self) -> "RelaySettings":
        """Fall back to the standard ANTHROPIC_API_KEY variable."""
        if not self.anthropic_api_key:
            self.anthropic_api_key = os.getenv("ANTHROPIC_API_KEY", "")
        return self

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_minutes * 60


@lru_cache
def get_settings() -> RelaySettings:
    """Get cached relay settings instance."""
    return RelaySettings()
