"""revue: concurrency-safe context for automated change-request review.

Exactly-once webhook intake, a durable priority embedding queue, a
resilient embedding pipeline, and exact-path plus nearest-neighbour context
retrieval.
"""

__version__ = "0.1.0"

from revue._revue import Revue
from revue.config import RevueSettings, get_settings
from revue.context import ChangedFile, ContextEngine, ContextResult
from revue.embedding import (
    EmbedFailure,
    EmbeddingPipeline,
    EmbeddingProvider,
    EmbedResult,
    FileFilter,
    FilterReport,
    OpenAIEmbedding,
    SourceFile,
    chunk_code_file,
    retry_async,
)
from revue.exceptions import (
    ClaimStoreUnavailableError,
    ContentSourceError,
    PermanentJobError,
    ProviderCircuitOpenError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    RevueError,
    StorageError,
    UnsupportedEventError,
)
from revue.intake import (
    ClaimResult,
    ClaimStats,
    EmojiEvent,
    IntakeGuard,
    MergeRequestEvent,
    NoteEvent,
    PushEvent,
    UnrecognizedEvent,
    parse_event,
)
from revue.jobs import JobQueue, JobWorker, QueueStats
from revue.models import (
    ClaimStatus,
    EmbeddingJob,
    EmbeddingRecord,
    JobPriority,
    JobStatus,
    ProcessingClaim,
)
from revue.sources import ContentSource, LocalRepositorySource, SourceSnapshot
from revue.store import EmbeddingStore

__all__ = [
    "ChangedFile",
    "ClaimResult",
    "ClaimStats",
    "ClaimStatus",
    "ClaimStoreUnavailableError",
    "ContentSource",
    "ContentSourceError",
    "ContextEngine",
    "ContextResult",
    "EmbedFailure",
    "EmbedResult",
    "EmbeddingJob",
    "EmbeddingPipeline",
    "EmbeddingProvider",
    "EmbeddingRecord",
    "EmbeddingStore",
    "EmojiEvent",
    "FileFilter",
    "FilterReport",
    "IntakeGuard",
    "JobPriority",
    "JobQueue",
    "JobStatus",
    "JobWorker",
    "LocalRepositorySource",
    "MergeRequestEvent",
    "NoteEvent",
    "OpenAIEmbedding",
    "PermanentJobError",
    "ProcessingClaim",
    "ProviderCircuitOpenError",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderTransientError",
    "PushEvent",
    "QueueStats",
    "Revue",
    "RevueError",
    "RevueSettings",
    "SourceFile",
    "SourceSnapshot",
    "StorageError",
    "UnrecognizedEvent",
    "UnsupportedEventError",
    "chunk_code_file",
    "get_settings",
    "parse_event",
    "retry_async",
]
