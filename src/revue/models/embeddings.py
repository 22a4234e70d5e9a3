"""EmbeddingRecord model: one vectorized file (or file chunk) of a resource."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class EmbeddingRecordBase(SQLModel):
    """Base fields for an embedding record. Subclass with ``table=True`` for a concrete table.

    Logically keyed by ``(resource_id, file_path, branch)``.  Chunked files
    are stored under ``path#chunkN`` keys.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    resource_id: str = Field(index=True)
    file_path: str = Field(index=True)
    content: str = Field(default="")
    vector: list[float] = Field(default_factory=list, sa_type=JSON)
    language: str = Field(default="plaintext")
    revision_id: str = Field(default="")
    branch: str = Field(default="main")
    content_hash: str = Field(default="")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )

    @property
    def base_path(self) -> str:
        """File path with any ``#chunkN`` suffix removed."""
        return self.file_path.split("#chunk", 1)[0]


class EmbeddingRecord(EmbeddingRecordBase, table=True):
    """Default embedding table: ``revue_embeddings``."""

    __tablename__ = "revue_embeddings"
    __table_args__ = (
        UniqueConstraint("resource_id", "file_path", "branch", name="uq_revue_embeddings_key"),
    )
