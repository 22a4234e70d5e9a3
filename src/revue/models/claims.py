"""ProcessingClaim model: durable record of the right to process one event."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel


class ClaimStatus(str, Enum):
    """Lifecycle of a processing claim."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_CLAIM_PREDICATE = "status = 'active'"
"""SQL predicate of the partial unique index guarding active fingerprints."""


class ProcessingClaimBase(SQLModel):
    """Base fields for a processing claim. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    fingerprint: str = Field(index=True)
    event_kind: str = Field(default="")
    resource_id: str = Field(default="", index=True)
    status: str = Field(default=ClaimStatus.ACTIVE.value, index=True)
    owner_instance_id: str = Field(default="")
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
        index=True,
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    error: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class ProcessingClaim(ProcessingClaimBase, table=True):
    """Default claim table: ``revue_processing_claims``.

    At most one ``active`` row may exist per fingerprint; the partial unique
    index makes the claim insert itself the mutual-exclusion primitive.
    """

    __tablename__ = "revue_processing_claims"
    __table_args__ = (
        Index(
            "uq_revue_claims_active_fingerprint",
            "fingerprint",
            unique=True,
            sqlite_where=text(ACTIVE_CLAIM_PREDICATE),
            postgresql_where=text(ACTIVE_CLAIM_PREDICATE),
        ),
    )
