"""EmbeddingJob model: durable unit of asynchronous embedding work."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum, IntEnum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class JobStatus(str, Enum):
    """Lifecycle of an embedding job."""

    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobPriority(IntEnum):
    """Conventional priority levels. Any integer is accepted; higher runs first."""

    LOW = 0
    NORMAL = 5
    HIGH = 10


ELIGIBLE_STATUSES: tuple[str, ...] = (JobStatus.PENDING.value, JobStatus.RETRYING.value)
ACTIVE_STATUSES: tuple[str, ...] = (
    JobStatus.PENDING.value,
    JobStatus.PROCESSING.value,
    JobStatus.RETRYING.value,
)


class EmbeddingJobBase(SQLModel):
    """Base fields for an embedding job. Subclass with ``table=True`` for a concrete table."""

    id: int | None = Field(default=None, primary_key=True)
    resource_id: str = Field(index=True)
    source_location: str = Field(default="")
    correlation_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        index=True,
        unique=True,
    )
    priority: int = Field(default=JobPriority.NORMAL.value, index=True)
    status: str = Field(default=JobStatus.PENDING.value, index=True)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    is_reembedding: bool = Field(default=False)
    error: str | None = Field(default=None)
    available_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
        index=True,
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    started_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    completed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)


class EmbeddingJob(EmbeddingJobBase, table=True):
    """Default job table: ``revue_embedding_jobs``."""

    __tablename__ = "revue_embedding_jobs"
