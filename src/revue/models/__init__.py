"""SQLModel database models for revue."""

from revue.models.claims import ClaimStatus, ProcessingClaim, ProcessingClaimBase
from revue.models.embeddings import EmbeddingRecord, EmbeddingRecordBase
from revue.models.jobs import EmbeddingJob, EmbeddingJobBase, JobPriority, JobStatus

__all__ = [
    "ClaimStatus",
    "EmbeddingJob",
    "EmbeddingJobBase",
    "EmbeddingRecord",
    "EmbeddingRecordBase",
    "JobPriority",
    "JobStatus",
    "ProcessingClaim",
    "ProcessingClaimBase",
]
