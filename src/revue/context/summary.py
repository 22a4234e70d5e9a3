"""Plain-text rendering of retrieved context."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from revue.models.embeddings import EmbeddingRecord

DEFAULT_EXCERPT_LENGTH = 500

NO_CONTEXT_SUMMARY = "No relevant context files found from semantic search."
IN_PROGRESS_SUMMARY = "Project context is being generated. This may take some time."


def excerpt(content: str, length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    if len(content) <= length:
        return content
    return content[:length] + "..."


def render_summary(
    records: Sequence[EmbeddingRecord],
    *,
    excerpt_length: int = DEFAULT_EXCERPT_LENGTH,
) -> str:
    """One block per record: path, language and a fenced excerpt of its content."""
    if not records:
        return NO_CONTEXT_SUMMARY

    blocks = [
        f"File: {r.file_path} ({r.language})\n"
        f"```{r.language}\n"
        f"{excerpt(r.content, excerpt_length)}\n"
        f"```"
        for r in records
    ]
    header = f"Project context ({len(records)} relevant files):"
    return "\n\n".join([header, *blocks]) + "\n"
