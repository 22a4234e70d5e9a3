"""EmbeddingStore: persistence and nearest-neighbour lookup for embedding records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import numpy as np
from sqlalchemy import delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from revue.exceptions import StorageError
from revue.models.embeddings import EmbeddingRecord
from revue.store.dialect import upsert

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

_CONFLICT_KEYS = ["resource_id", "file_path", "branch"]
_UPDATE_KEYS = ["content", "vector", "language", "revision_id", "content_hash", "updated_at"]


@dataclass(frozen=True, slots=True)
class ScoredRecord:
    """An embedding record with its cosine similarity to a query vector."""

    record: EmbeddingRecord
    score: float


class EmbeddingStore:
    """Durable embedding records keyed by ``(resource_id, file_path, branch)``.

    Each public method runs in its own session and transaction.  Store
    failures surface as :class:`~revue.exceptions.StorageError`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        dialect: str = "sqlite",
        model: type[EmbeddingRecord] = EmbeddingRecord,
    ) -> None:
        self._session_factory = session_factory
        self._dialect = dialect
        self._model = model

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_records(self, records: Sequence[EmbeddingRecord]) -> int:
        """Insert or overwrite *records*. Returns the number written."""
        if not records:
            return 0
        try:
            async with self._session_factory() as session:
                await self._write(session, records)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Failed to store {len(records)} embedding record(s): {exc}"
            raise StorageError(msg) from exc
        logger.debug("Stored %d embedding record(s)", len(records))
        return len(records)

    async def replace_resource(
        self,
        resource_id: str,
        records: Sequence[EmbeddingRecord],
    ) -> int:
        """Delete every record of *resource_id*, then insert *records*, in one transaction."""
        model = self._model
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(model).where(model.resource_id == resource_id))
                removed = result.rowcount or 0  # type: ignore[attr-defined]
                await self._write(session, records)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Failed to replace embeddings of {resource_id!r}: {exc}"
            raise StorageError(msg) from exc
        logger.info(
            "Replaced embeddings of %s: removed %d, stored %d", resource_id, removed, len(records)
        )
        return len(records)

    async def clear_resource(self, resource_id: str) -> int:
        """Delete every record of *resource_id*. Returns count deleted."""
        model = self._model
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(model).where(model.resource_id == resource_id))
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Failed to clear embeddings of {resource_id!r}: {exc}"
            raise StorageError(msg) from exc
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def _write(self, session: AsyncSession, records: Iterable[EmbeddingRecord]) -> None:
        now = datetime.now(UTC)
        for record in records:
            values = record.model_dump()
            values["updated_at"] = now
            await upsert(
                session,
                self._dialect,
                self._model,
                values,
                conflict_keys=_CONFLICT_KEYS,
                update_keys=_UPDATE_KEYS,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_for_resource(
        self,
        resource_id: str,
        *,
        branch: str | None = None,
    ) -> list[EmbeddingRecord]:
        """All records of *resource_id* (optionally one branch), ordered by path."""
        model = self._model
        stmt = select(model).where(model.resource_id == resource_id)
        if branch is not None:
            stmt = stmt.where(model.branch == branch)
        stmt = stmt.order_by(model.file_path, model.branch)  # type: ignore[arg-type]
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            msg = f"Failed to load embeddings of {resource_id!r}: {exc}"
            raise StorageError(msg) from exc

    async def count_for_resource(self, resource_id: str) -> int:
        model = self._model
        stmt = select(func.count()).select_from(model).where(model.resource_id == resource_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return int(result.scalar_one())
        except SQLAlchemyError as exc:
            msg = f"Failed to count embeddings of {resource_id!r}: {exc}"
            raise StorageError(msg) from exc

    async def search_similar(
        self,
        resource_id: str,
        vector: Sequence[float],
        *,
        k: int = 3,
        branch: str | None = None,
        exclude_paths: Iterable[str] = (),
        candidates: Sequence[EmbeddingRecord] | None = None,
    ) -> list[ScoredRecord]:
        """Top *k* records of *resource_id* by cosine similarity to *vector*.

        Records whose path is in *exclude_paths* or whose vector has a
        different dimension are skipped.  Ties are broken by file path.
        Pass *candidates* to score records the caller already loaded instead
        of reading the resource again.
        """
        if k <= 0:
            return []
        if candidates is None:
            candidates = await self.list_for_resource(resource_id, branch=branch)
        excluded = set(exclude_paths)
        pool = [
            r for r in candidates if r.file_path not in excluded and len(r.vector) == len(vector)
        ]
        if not pool:
            return []

        query = np.asarray(vector, dtype=np.float32)
        matrix = np.asarray([r.vector for r in pool], dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        scored = [
            ScoredRecord(record=record, score=float(score))
            for record, score in zip(pool, scores, strict=True)
        ]
        scored.sort(key=lambda s: (-s.score, s.record.file_path))
        return scored[:k]
