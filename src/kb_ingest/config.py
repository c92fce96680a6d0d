"""Shared configuration loaded from environment / ``.env``."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # LLM
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for local vLLM)")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for an OpenAI-compatible API. Leave empty to use OpenAI cloud."
        ),
    )

    # Semantic chunking
    chunking_model: str = "gpt-4o"
    chunking_timeout: float = Field(default=60.0, description="Seconds per chunking request")
    chunking_max_retries: int = 2
    max_content_length: int = Field(
        default=30000,
        description="Characters sent per chunking request; longer input is windowed",
    )

    # Tagging / cleanup
    tagging_model: str = "gpt-4o-mini"
    tagging_temperature: float = 0.3
    tagging_timeout: float = 10.0
    cleaning_model: str = "gpt-4o-mini"

    # Embedding
    embedding_provider: str = Field(default="openai", description="'openai' or 'huggingface'")
    embedding_model: str = "text-embedding-3-small"
    embedding_timeout: float = 30.0
    embedding_max_retries: int = 2
    embedding_batch_size: int = 100

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    collection_prefix: str = "kb_"

    # Structured chunking (tokens)
    chunk_target_tokens: int = 300
    chunk_max_tokens: int = 700
    chunk_min_tokens: int = 50

    # Character chunking (characters)
    char_chunk_size: int = 1000
    char_chunk_overlap: int = 200

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton; import `settings` wherever needed.
settings = Settings()
