"""Vectorization providers."""

from revue.embedding.providers._protocol import EmbeddingProvider, SupportsHealthCheck
from revue.embedding.providers.openai import OpenAIEmbedding

__all__ = [
    "EmbeddingProvider",
    "OpenAIEmbedding",
    "SupportsHealthCheck",
]
