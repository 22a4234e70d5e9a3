"""Embedding pipeline data types: source files, filter reports and results."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from revue.models.embeddings import EmbeddingRecord


@dataclass(frozen=True, slots=True)
class SourceFile:
    """One file of a resource as delivered by a content source.

    Attributes:
        path: Repository-relative path using forward slashes.
        content: Decoded text content.
        language: Language label (``"plaintext"`` when unknown).
    """

    path: str
    content: str
    language: str = "plaintext"


@dataclass(frozen=True, slots=True)
class EmbedFailure:
    """An item the pipeline could not vectorize."""

    path: str
    reason: str


# Filter decision reasons
ACCEPTED = "accepted"
SKIPPED_EMPTY = "empty"
SKIPPED_TOO_LARGE = "too_large"
SKIPPED_BINARY = "binary"
SKIPPED_EXTENSION = "extension"
SKIPPED_NO_CODE = "no_code"


@dataclass(slots=True)
class FilterReport:
    """Every filtering decision made for one pipeline run.

    Attributes:
        total: Files offered to the filter.
        reasons: Count of files per decision reason (``accepted`` included).
        skipped: ``(path, reason)`` for each rejected file, in input order.
        extension_stats: Files seen per lower-cased extension
            (``"no-extension"`` for suffixless files).
        special_files: Files accepted because of their well-known name.
    """

    total: int = 0
    reasons: Counter[str] = field(default_factory=Counter)
    skipped: list[tuple[str, str]] = field(default_factory=list)
    extension_stats: Counter[str] = field(default_factory=Counter)
    special_files: int = 0

    @property
    def accepted(self) -> int:
        return self.reasons[ACCEPTED]

    def record(self, path: str, reason: str) -> None:
        self.reasons[reason] += 1
        if reason != ACCEPTED:
            self.skipped.append((path, reason))


@dataclass(frozen=True, slots=True)
class EmbedResult:
    """Outcome of :meth:`EmbeddingPipeline.embed`.

    Attributes:
        records: Vectorized records ready to persist (one per file or chunk).
        failures: Items that exhausted their retries or hit an open circuit.
        report: Filtering decisions for the input files.
        circuit_tripped: True if the provider circuit was open at any point,
            meaning some failures were fail-fast rather than real attempts.
    """

    records: list[EmbeddingRecord]
    failures: list[EmbedFailure]
    report: FilterReport
    circuit_tripped: bool = False
