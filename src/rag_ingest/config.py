"""Shared configuration loaded from environment / ``.env`` file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Queue
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL for RQ")
    queue_name: str = "rag-builder"
    job_attempts: int = Field(default=3, ge=1, description="Total delivery attempts per job")
    job_backoff_seconds: int = Field(default=5, ge=1, description="First retry delay; doubles per retry")
    job_priority: int = 1
    keep_completed_jobs: int = 100
    keep_failed_jobs: int = 50
    job_timeout_seconds: int | None = Field(
        default=None,
        description="Hard RQ job timeout. Leave unset to use the RQ default.",
    )

    # Embedding
    embedding_provider: str = Field(default="openai", description="'openai' or 'huggingface'")
    embedding_model: str = "text-embedding-3-small"
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for a local endpoint)")
    embedding_base_url: str = Field(
        default="",
        description="Base URL of an OpenAI-compatible embedding endpoint. Leave empty for OpenAI cloud.",
    )
    embedding_dim: int = 1536
    embedding_batch_size: int = 100
    embedding_max_retries: int = 3
    embedding_retry_delay: float = Field(default=1.0, description="Seconds; multiplied by the attempt number")
    embedding_batch_pause: float = 0.1

    # Vector index
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_path: str = Field(
        default="",
        description="Directory for an embedded persistent Chroma. Overrides host/port when set.",
    )
    index_name: str = "documind"
    index_metric: str = "cosine"
    upsert_batch_size: int = 100
    upsert_batch_pause: float = 0.1

    # Chunking
    chunk_max_size: int = 1000
    chunk_overlap: int = 200
    chunk_separator: str = "\n\n"
    chunk_merge_overlaps: bool = False

    # Document status store
    database_url: str = "sqlite:///./rag_ingest.db"
    claim_ttl_seconds: int = Field(
        default=1800,
        ge=1,
        description="A document left 'processing' longer than this may be claimed again",
    )

    # Extraction
    extraction_timeout: int = 60
    extraction_max_retries: int = 3

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


# Singleton — import `settings` wherever needed.
settings = Settings()
