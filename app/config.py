"""
Application Configuration
Loads environment variables and provides typed configuration.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI (optional at startup; services fail on first use without it)
    openai_api_key: Optional[str] = Field(default=None)

    # Embedding Settings
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # Generation Settings
    chat_model: str = "gpt-4o-mini"
    generation_max_retries: int = Field(default=0, ge=0)

    # Chunking
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)

    # Retrieval
    default_top_k: int = 5
    default_similarity_threshold: float = 0.4

    # Guardrails
    max_query_length: int = 500
    max_context_chars: int = 8000
    max_history_messages: int = 6
    max_history_chars: int = 2000

    # Vector store backend: "memory" or "pinecone"
    vector_store_type: str = "memory"
    pinecone_api_key: Optional[str] = Field(default=None)
    pinecone_index: str = "session-rag"

    # App Settings
    environment: str = "development"
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
