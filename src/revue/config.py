"""Configuration for revue.

Every setting can be provided through a ``REVUE_``-prefixed environment
variable or a local ``.env`` file, e.g. ``REVUE_DATABASE_URL`` or
``REVUE_QUEUE_CONCURRENCY``.
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from revue.embedding.filters import DEFAULT_ALLOWED_EXTENSIONS


class RevueSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REVUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Durable store
    database_url: str = "sqlite+aiosqlite:///revue.db"
    instance_id: str | None = None

    # Intake guard
    claim_max_processing_seconds: float = Field(30 * 60.0, gt=0)
    claim_reap_interval_seconds: float = Field(5 * 60.0, gt=0)

    # Job queue and worker
    queue_max_attempts: int = Field(3, ge=1)
    queue_concurrency: int = Field(2, ge=1)
    queue_poll_interval: float = Field(2.0, gt=0)
    queue_backoff_base: float = Field(30.0, ge=0)
    queue_backoff_cap: float = Field(15 * 60.0, ge=0)
    queue_backoff_jitter: float = Field(5.0, ge=0)
    queue_stall_timeout: float = Field(30 * 60.0, gt=0)
    queue_stall_check_interval: float = Field(60.0, gt=0)
    await_timeout: float = Field(300.0, ge=0)
    await_poll_interval: float = Field(2.0, gt=0)

    # Vectorization provider
    embedding_base_url: str = "http://localhost:8000/v1"
    embedding_model: str = "qodo-embed-1"
    embedding_api_key: str | None = None
    embedding_dimensions: int | None = None
    embedding_timeout: float = Field(60.0, gt=0)

    # Pipeline
    pipeline_batch_size: int = Field(3, ge=1)
    pipeline_item_delay: float = Field(0.2, ge=0)
    pipeline_batch_delay: float = Field(2.0, ge=0)
    pipeline_max_retries: int = Field(3, ge=0)
    pipeline_retry_base_delay: float = Field(1.0, ge=0)
    pipeline_retry_max_delay: float = Field(30.0, ge=0)
    pipeline_retry_jitter: float = Field(1.0, ge=0)
    pipeline_max_content_length: int = Field(100_000, ge=1)
    pipeline_max_chunk_size: int = Field(8000, ge=1)
    allowed_extensions: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: sorted(DEFAULT_ALLOWED_EXTENSIONS)
    )

    # Circuit breaker
    circuit_failure_threshold: int = Field(5, ge=1)
    circuit_cooldown_seconds: float = Field(60.0, ge=0)

    # Context retrieval
    context_min_direct_matches: int = Field(5, ge=0)
    context_max_direct_results: int = Field(10, ge=1)
    context_max_query_content: int = Field(10_000, ge=1)
    context_per_file_k: int = Field(3, ge=0)
    context_max_results: int = Field(15, ge=1)
    context_excerpt_length: int = Field(500, ge=1)

    # Local repositories
    repositories_root: str | None = None

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _split_extensions(cls, value: object) -> object:
        # Accept "js,ts,py" as well as a JSON list
        if isinstance(value, str):
            if value.lstrip().startswith("["):
                return json.loads(value)
            return [ext.strip().lower().lstrip(".") for ext in value.split(",") if ext.strip()]
        return value


@lru_cache
def get_settings() -> RevueSettings:
    return RevueSettings()
