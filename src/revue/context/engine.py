"""ContextEngine: rank repository artifacts relevant to a set of changed files."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from typing import TYPE_CHECKING

from revue.context.summary import (
    DEFAULT_EXCERPT_LENGTH,
    IN_PROGRESS_SUMMARY,
    NO_CONTEXT_SUMMARY,
    render_summary,
)
from revue.context.types import ChangedFile, ContextResult
from revue.exceptions import RevueError

if TYPE_CHECKING:
    from revue.embedding.pipeline import EmbeddingPipeline
    from revue.jobs.queue import JobQueue
    from revue.models.embeddings import EmbeddingRecord
    from revue.store.embeddings import EmbeddingStore

logger = logging.getLogger(__name__)


class ContextEngine:
    """Exact-path plus nearest-neighbour context retrieval.

    Records whose path matches a changed file (or its pre-rename path) come
    first.  If at least *min_direct_matches* are found they alone are
    returned, capped at *max_direct_results*.  Otherwise each changed file
    with content up to *max_query_content* characters is vectorized and its
    *per_file_k* nearest neighbours are appended, and the combined list is
    capped at *max_results*.  Ties are broken by path, so the same inputs
    always give the same ranking.

    Provider and store failures reduce the context instead of raising.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        pipeline: EmbeddingPipeline,
        queue: JobQueue | None = None,
        *,
        min_direct_matches: int = 5,
        max_direct_results: int = 10,
        max_query_content: int = 10_000,
        per_file_k: int = 3,
        max_results: int = 15,
        excerpt_length: int = DEFAULT_EXCERPT_LENGTH,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._queue = queue
        self._min_direct_matches = min_direct_matches
        self._max_direct_results = max_direct_results
        self._max_query_content = max_query_content
        self._per_file_k = per_file_k
        self._max_results = max_results
        self._excerpt_length = excerpt_length

    async def get_context(
        self,
        resource_id: str,
        changed_files: Sequence[ChangedFile],
        *,
        branch: str | None = None,
    ) -> ContextResult:
        try:
            records = await self._store.list_for_resource(resource_id, branch=branch)
        except RevueError as exc:
            logger.warning("Could not load embeddings of %s: %s", resource_id, exc)
            return ContextResult(summary=NO_CONTEXT_SUMMARY)
        if branch is None:
            records = _latest_per_path(records)

        if not records:
            in_progress = await self._embedding_in_progress(resource_id)
            logger.info("No embeddings for %s (in progress: %s)", resource_id, in_progress)
            return ContextResult(
                summary=IN_PROGRESS_SUMMARY if in_progress else NO_CONTEXT_SUMMARY,
                embedding_in_progress=in_progress,
            )

        direct = self._direct_matches(records, changed_files)
        logger.debug("Found %d directly related record(s) for %s", len(direct), resource_id)

        if len(direct) >= self._min_direct_matches:
            ranked = direct[: self._max_direct_results]
        else:
            related = await self._nearest_neighbours(resource_id, changed_files, direct, records)
            ranked = (direct + related)[: self._max_results]

        return ContextResult(
            ranked_files=ranked,
            summary=render_summary(ranked, excerpt_length=self._excerpt_length),
            direct_matches=min(len(direct), len(ranked)),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _direct_matches(
        records: Sequence[EmbeddingRecord],
        changed_files: Sequence[ChangedFile],
    ) -> list[EmbeddingRecord]:
        """Records whose base path is a changed path, most-referenced first."""
        references: Counter[str] = Counter()
        for change in changed_files:
            for path in change.paths:
                references[path] += 1
        matched = [r for r in records if references[r.base_path] > 0]
        matched.sort(key=lambda r: (-references[r.base_path], r.file_path))
        return matched

    async def _nearest_neighbours(
        self,
        resource_id: str,
        changed_files: Sequence[ChangedFile],
        direct: Sequence[EmbeddingRecord],
        records: Sequence[EmbeddingRecord],
    ) -> list[EmbeddingRecord]:
        selected = {r.file_path for r in direct}
        budget = self._max_results - len(direct)
        related: list[EmbeddingRecord] = []

        for change in changed_files:
            if len(related) >= budget:
                break
            if change.deleted or not change.content or len(change.content) > self._max_query_content:
                continue
            try:
                vector = await self._pipeline.embed_one(change.content)
                matches = await self._store.search_similar(
                    resource_id,
                    vector,
                    k=self._per_file_k,
                    exclude_paths=selected,
                    candidates=records,
                )
            except Exception as exc:
                logger.warning("Similarity search for %s failed: %s", change.path, exc)
                continue
            for match in matches:
                selected.add(match.record.file_path)
                related.append(match.record)

        logger.debug("Found %d semantically related record(s) for %s", len(related), resource_id)
        return related

    async def _embedding_in_progress(self, resource_id: str) -> bool:
        if self._queue is None:
            return False
        try:
            return await self._queue.has_active_jobs(resource_id)
        except RevueError as exc:
            logger.warning("Could not check embedding jobs of %s: %s", resource_id, exc)
            return False


def _latest_per_path(records: Sequence[EmbeddingRecord]) -> list[EmbeddingRecord]:
    """Keep one record per file path, the most recently updated across branches."""
    latest: dict[str, EmbeddingRecord] = {}
    for record in records:
        seen = latest.get(record.file_path)
        if seen is None or record.updated_at > seen.updated_at:
            latest[record.file_path] = record
    return list(latest.values())
