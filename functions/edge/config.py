"""
Configuration and settings for the edge functions service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/functions/v1")
    log_level: str = Field(default="INFO")

    # Hosted auth (Supabase)
    supabase_url: Optional[str] = Field(default=None)
    supabase_anon_key: Optional[str] = Field(default=None)

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # LLM providers
    openai_api_key: Optional[str] = Field(default=None)
    anthropic_api_key: Optional[str] = Field(default=None)
    llm_provider: Optional[str] = Field(default=None)
    use_mock_llm: bool = Field(
        default=False, validation_alias=AliasChoices("USE_MOCK", "use_mock_llm")
    )

    # Bible text API
    bible_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("BIBLE_API_KEY", "API_BIBLE_KEY")
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "EDGE_USE_IN_MEMORY_BACKENDS", "use_in_memory_backends"
        ),
    )

    # TTL cache (Redis when configured)
    redis_url: Optional[str] = Field(default=None)
    cache_key_prefix: str = Field(default="disciplefy:cache:")
    cache_ttl_seconds: int = Field(default=300)

    # Request handling
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    max_body_bytes: int = Field(default=10 * 1024 * 1024)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
