"""Embedding generation: filtering, chunking, retry, circuit-breaking, providers."""

from revue.embedding.chunking import chunk_code_file
from revue.embedding.circuit import breaker_status, provider_breaker
from revue.embedding.filters import FileFilter, is_binary_content, might_contain_code
from revue.embedding.pipeline import EmbeddingPipeline
from revue.embedding.providers import EmbeddingProvider, OpenAIEmbedding, SupportsHealthCheck
from revue.embedding.retry import backoff_delay, is_retryable, retry_async
from revue.embedding.types import EmbedFailure, EmbedResult, FilterReport, SourceFile

__all__ = [
    "EmbedFailure",
    "EmbedResult",
    "EmbeddingPipeline",
    "EmbeddingProvider",
    "FileFilter",
    "FilterReport",
    "OpenAIEmbedding",
    "SourceFile",
    "SupportsHealthCheck",
    "backoff_delay",
    "breaker_status",
    "chunk_code_file",
    "is_binary_content",
    "is_retryable",
    "might_contain_code",
    "provider_breaker",
    "retry_async",
]
