"""Durable store helpers: dialect-aware statements and the embedding store."""

from revue.store.dialect import get_dialect, insert_if_absent, upsert
from revue.store.embeddings import EmbeddingStore, ScoredRecord

__all__ = [
    "EmbeddingStore",
    "ScoredRecord",
    "get_dialect",
    "insert_if_absent",
    "upsert",
]
