"""
Settings Management

Provides centralized, type-safe configuration using Pydantic.
Supports environment variables, .env files, and hierarchical config.

Design decisions:
- Using pydantic-settings for validation and type coercion
- Immutable settings after initialization (frozen model)
- Backend selection is an explicit value, never inferred from the environment
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingSettings(BaseSettings):
    """Embedding provider configuration."""

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")

    # hash = deterministic offline embedder, no API key required
    provider: Literal["openai", "local", "hash"] = "openai"

    # OpenAI settings
    openai_api_key: SecretStr | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)
    model: str = Field(default="text-embedding-3-small")
    dimensions: int | None = Field(default=None, ge=1)  # Optional dimension reduction

    # Local sentence-transformers settings
    local_model_name: str = Field(default="all-MiniLM-L6-v2")
    device: str = Field(default="cpu")

    # Hash embedder settings
    hash_dimension: int = Field(default=256, ge=8)

    # Shared settings
    request_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    cache_enabled: bool = Field(default=True)


class KnowledgeStoreSettings(BaseSettings):
    """Knowledge store configuration."""

    model_config = SettingsConfigDict(env_prefix="KNOWLEDGE_")

    backend: Literal["file", "sqlite"] = "sqlite"

    # Backend locations
    file_path: str = Field(default="./data/knowledge/records.jsonl")
    sqlite_path: str = Field(default="./data/knowledge/knowledge.sqlite")

    # Chunking
    chunk_size: int = Field(default=800, ge=1)
    chunk_overlap: int = Field(default=100, ge=0)
    max_content_length: int = Field(default=2000, ge=1)

    # Duplicate detection
    duplicate_threshold: float = Field(default=0.8, gt=0.0, le=1.0)

    # Retrieval
    default_limit: int = Field(default=4, ge=1)
    default_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    recency_weighting: bool = Field(default=False)

    # Retention
    retention_days: float = Field(default=90, ge=0)

    @model_validator(mode="after")
    def _check_chunking(self) -> "KnowledgeStoreSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="OBS_")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: str | None = Field(default=None)


class Settings(BaseSettings):
    """
    Master settings aggregator.

    This is the single source of truth for all configuration.
    Sub-settings are composed here to maintain clear boundaries.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,  # Immutable after creation
    )

    app_name: str = Field(default="kbstore")
    environment: Literal["development", "staging", "production"] = "development"

    # Component settings (composed)
    knowledge: KnowledgeStoreSettings = Field(default_factory=KnowledgeStoreSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Safe to share because settings are frozen.
    """
    return Settings()
