"""Context retrieval data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from revue.models.embeddings import EmbeddingRecord


@dataclass(frozen=True, slots=True)
class ChangedFile:
    """One file touched by a change request.

    Attributes:
        path: Path after the change.
        content: New content; empty for deleted or unavailable files.
        old_path: Path before the change, for renames.
        deleted: True if the change removes the file.
    """

    path: str
    content: str = ""
    old_path: str | None = None
    deleted: bool = False

    @property
    def paths(self) -> frozenset[str]:
        if self.old_path and self.old_path != self.path:
            return frozenset({self.path, self.old_path})
        return frozenset({self.path})


@dataclass(frozen=True, slots=True)
class ContextResult:
    """Ranked repository artifacts for a set of changed files.

    Attributes:
        ranked_files: Directly related records first, then nearest neighbours.
        summary: Human-readable rendering of *ranked_files*.
        embedding_in_progress: True if the resource had no embeddings yet
            but a job to produce them is queued or running.
        direct_matches: How many of *ranked_files* matched a changed path.
    """

    ranked_files: list[EmbeddingRecord] = field(default_factory=list)
    summary: str = ""
    embedding_in_progress: bool = False
    direct_matches: int = 0
