"""JobQueue: durable priority queue of embedding jobs."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import ColumnElement, and_, func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select

from revue.embedding.retry import backoff_delay
from revue.exceptions import StorageError
from revue.models.jobs import (
    ACTIVE_STATUSES,
    EmbeddingJob,
    JobPriority,
    JobStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 30.0
DEFAULT_BACKOFF_CAP = 15 * 60.0
DEFAULT_BACKOFF_JITTER = 5.0
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_AWAIT_TIMEOUT = 300.0

# Candidates fetched per selection round; losing the claim race on all of
# them triggers another round.
_CANDIDATES_PER_ROUND = 5
_MAX_ROUNDS = 3


@dataclass(frozen=True, slots=True)
class QueueStats:
    pending: int = 0
    processing: int = 0
    retrying: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.retrying + self.completed + self.failed


class JobQueue:
    """Durable embedding-job queue shared by every instance using the database.

    Jobs are served highest priority first, oldest first within a priority
    (insertion order breaks exact ties).  A job is handed out by a
    compare-and-set update, so two workers never start the same job.
    Failed attempts are retried with capped exponential backoff until
    ``max_attempts`` is reached.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_cap: float = DEFAULT_BACKOFF_CAP,
        backoff_jitter: float = DEFAULT_BACKOFF_JITTER,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        await_timeout: float = DEFAULT_AWAIT_TIMEOUT,
        model: type[EmbeddingJob] = EmbeddingJob,
    ) -> None:
        if max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {max_attempts}"
            raise ValueError(msg)
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap
        self._backoff_jitter = backoff_jitter
        self._poll_interval = poll_interval
        self._await_timeout = await_timeout
        self._model = model

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        resource_id: str,
        source_location: str = "",
        *,
        correlation_id: str | None = None,
        priority: int = JobPriority.NORMAL,
        is_reembedding: bool = False,
        max_attempts: int | None = None,
    ) -> EmbeddingJob:
        """Persist a new pending job and return it.

        Enqueueing a *correlation_id* that already exists returns the
        existing job instead of creating a second one.
        """
        now = datetime.now(UTC)
        job = self._model(
            resource_id=resource_id,
            source_location=source_location,
            correlation_id=correlation_id or str(uuid.uuid4()),
            priority=int(priority),
            status=JobStatus.PENDING.value,
            max_attempts=max_attempts or self._max_attempts,
            is_reembedding=is_reembedding,
            available_at=now,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory() as session:
                session.add(job)
                await session.commit()
                await session.refresh(job)
        except IntegrityError:
            existing = await self.get_by_correlation_id(job.correlation_id)
            if existing is None:
                raise
            logger.info("Job %s already enqueued", job.correlation_id)
            return existing
        except SQLAlchemyError as exc:
            msg = f"Failed to enqueue job for {resource_id!r}: {exc}"
            raise StorageError(msg) from exc

        logger.info(
            "Enqueued job %s for %s (priority=%d, reembedding=%s)",
            job.correlation_id,
            resource_id,
            job.priority,
            is_reembedding,
        )
        return job

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def _eligible(self, now: datetime) -> ColumnElement[bool]:
        model = self._model
        return or_(
            model.status == JobStatus.PENDING.value,
            and_(model.status == JobStatus.RETRYING.value, model.available_at <= now),
        )

    async def dequeue_next(self, now: datetime | None = None) -> EmbeddingJob | None:
        """Claim the next eligible job, moving it to ``processing``.

        Eligible jobs are ``pending`` ones and ``retrying`` ones whose
        backoff has elapsed.  Claiming increments ``attempts``.  Returns
        None when nothing is eligible.
        """
        model = self._model
        now = now or datetime.now(UTC)
        candidates_stmt = (
            select(model.id)
            .where(self._eligible(now))
            .order_by(model.priority.desc(), model.created_at, model.id)  # type: ignore[union-attr, attr-defined]
            .limit(_CANDIDATES_PER_ROUND)
        )
        try:
            async with self._session_factory() as session:
                for _ in range(_MAX_ROUNDS):
                    candidate_ids = list((await session.execute(candidates_stmt)).scalars().all())
                    if not candidate_ids:
                        return None
                    for job_id in candidate_ids:
                        result = await session.execute(
                            update(model)
                            .where(model.id == job_id, self._eligible(now))
                            .values(
                                status=JobStatus.PROCESSING.value,
                                attempts=model.attempts + 1,
                                started_at=now,
                                updated_at=now,
                            )
                        )
                        await session.commit()
                        if result.rowcount:  # type: ignore[attr-defined]
                            job = await session.get(model, job_id)
                            logger.info(
                                "Dequeued job %s (attempt %d/%d)",
                                job.correlation_id if job else job_id,
                                job.attempts if job else 0,
                                job.max_attempts if job else 0,
                            )
                            return job
                        logger.debug("Lost claim race for job %s", job_id)
        except SQLAlchemyError as exc:
            msg = f"Failed to dequeue job: {exc}"
            raise StorageError(msg) from exc
        return None

    async def mark_completed(self, job: EmbeddingJob) -> EmbeddingJob:
        now = datetime.now(UTC)
        return await self._set_outcome(
            job,
            status=JobStatus.COMPLETED,
            error=None,
            completed_at=now,
            available_at=None,
        )

    async def mark_failed_attempt(
        self,
        job: EmbeddingJob,
        error: str,
        *,
        retryable: bool = True,
        now: datetime | None = None,
    ) -> EmbeddingJob:
        """Record a failed attempt of *job*.

        A retryable failure with attempts left moves the job to
        ``retrying``, eligible again after the backoff delay; anything else
        moves it to ``failed``.
        """
        now = now or datetime.now(UTC)
        if retryable and job.attempts < job.max_attempts:
            delay = backoff_delay(
                job.attempts,
                base=self._backoff_base,
                cap=self._backoff_cap,
                jitter=self._backoff_jitter,
            )
            logger.warning(
                "Job %s attempt %d/%d failed, retrying in %.1fs: %s",
                job.correlation_id,
                job.attempts,
                job.max_attempts,
                delay,
                error,
            )
            return await self._set_outcome(
                job,
                status=JobStatus.RETRYING,
                error=error,
                completed_at=None,
                available_at=now + timedelta(seconds=delay),
            )

        logger.error(
            "Job %s failed after %d/%d attempt(s): %s",
            job.correlation_id,
            job.attempts,
            job.max_attempts,
            error,
        )
        return await self._set_outcome(
            job,
            status=JobStatus.FAILED,
            error=error,
            completed_at=now,
            available_at=None,
        )

    async def _set_outcome(
        self,
        job: EmbeddingJob,
        *,
        status: JobStatus,
        error: str | None,
        completed_at: datetime | None,
        available_at: datetime | None,
    ) -> EmbeddingJob:
        """Record the outcome of *job*'s current attempt.

        The update only applies while the row is still ``processing`` the
        same attempt.  A worker whose job was released as stalled and
        claimed again gets the current row back unchanged.
        """
        model = self._model
        values: dict[str, object] = {
            "status": status.value,
            "error": error,
            "completed_at": completed_at,
            "updated_at": datetime.now(UTC),
        }
        if available_at is not None:
            values["available_at"] = available_at
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(model)
                    .where(
                        model.id == job.id,
                        model.status == JobStatus.PROCESSING.value,
                        model.attempts == job.attempts,
                    )
                    .values(**values)
                )
                await session.commit()
                current = await session.get(model, job.id)
        except SQLAlchemyError as exc:
            msg = f"Failed to update job {job.correlation_id}: {exc}"
            raise StorageError(msg) from exc
        if not result.rowcount:  # type: ignore[attr-defined]
            logger.warning(
                "Dropped %s outcome of job %s attempt %d: job is now %s (attempt %d)",
                status.value,
                job.correlation_id,
                job.attempts,
                current.status if current else "missing",
                current.attempts if current else 0,
            )
        return current if current is not None else job

    async def release_stalled(self, older_than_seconds: float, now: datetime | None = None) -> int:
        """Return ``processing`` jobs started before the cutoff to ``retrying``.

        Recovers jobs whose worker died mid-run.  Jobs without attempts left
        are failed instead.  Returns the number of jobs touched.
        """
        model = self._model
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(seconds=older_than_seconds)
        stalled = and_(model.status == JobStatus.PROCESSING.value, model.started_at < cutoff)
        try:
            async with self._session_factory() as session:
                retried = await session.execute(
                    update(model)
                    .where(stalled, model.attempts < model.max_attempts)
                    .values(
                        status=JobStatus.RETRYING.value,
                        error="stalled: worker did not finish",
                        available_at=now,
                        updated_at=now,
                    )
                )
                failed = await session.execute(
                    update(model)
                    .where(stalled)
                    .values(
                        status=JobStatus.FAILED.value,
                        error="stalled: worker did not finish",
                        completed_at=now,
                        updated_at=now,
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Failed to release stalled jobs: {exc}"
            raise StorageError(msg) from exc
        count = (retried.rowcount or 0) + (failed.rowcount or 0)  # type: ignore[attr-defined]
        if count:
            logger.warning("Released %d stalled job(s)", count)
        return count

    # ------------------------------------------------------------------
    # Waiting and inspection
    # ------------------------------------------------------------------

    async def await_completion(
        self,
        correlation_id: str,
        timeout: float | None = None,
        *,
        poll_interval: float | None = None,
    ) -> EmbeddingJob | None:
        """Poll until the job reaches a terminal status or *timeout* elapses.

        Returns the terminal job, the last-known job on timeout, or None if
        no such job exists.  The job itself is never cancelled.
        """
        timeout = self._await_timeout if timeout is None else timeout
        interval = self._poll_interval if poll_interval is None else poll_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            job = await self.get_by_correlation_id(correlation_id)
            if job is None:
                return None
            if job.job_status.is_terminal:
                return job
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.info(
                    "Timed out after %.1fs waiting for job %s (status=%s)",
                    timeout,
                    correlation_id,
                    job.status,
                )
                return job
            await asyncio.sleep(min(interval, remaining))

    async def get_by_correlation_id(self, correlation_id: str) -> EmbeddingJob | None:
        model = self._model
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(model).where(model.correlation_id == correlation_id)
                )
                return result.scalars().first()
        except SQLAlchemyError as exc:
            msg = f"Failed to load job {correlation_id}: {exc}"
            raise StorageError(msg) from exc

    async def has_active_jobs(self, resource_id: str) -> bool:
        """True if *resource_id* has a pending, processing or retrying job."""
        return await self.active_job_for(resource_id) is not None

    async def active_job_for(self, resource_id: str) -> EmbeddingJob | None:
        """The oldest pending, processing or retrying job of *resource_id*, if any."""
        model = self._model
        stmt = (
            select(model)
            .where(model.resource_id == resource_id, model.status.in_(ACTIVE_STATUSES))  # type: ignore[attr-defined]
            .order_by(model.created_at, model.id)  # type: ignore[arg-type]
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalars().first()
        except SQLAlchemyError as exc:
            msg = f"Failed to check jobs of {resource_id!r}: {exc}"
            raise StorageError(msg) from exc

    async def stats(self) -> QueueStats:
        model = self._model
        stmt = select(model.status, func.count()).group_by(model.status)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            msg = f"Failed to read queue stats: {exc}"
            raise StorageError(msg) from exc
        counts = {status: int(count) for status, count in rows}
        return QueueStats(
            pending=counts.get(JobStatus.PENDING.value, 0),
            processing=counts.get(JobStatus.PROCESSING.value, 0),
            retrying=counts.get(JobStatus.RETRYING.value, 0),
            completed=counts.get(JobStatus.COMPLETED.value, 0),
            failed=counts.get(JobStatus.FAILED.value, 0),
        )

    async def recent_jobs(self, limit: int = 10, offset: int = 0) -> list[EmbeddingJob]:
        """Most recently created jobs first."""
        model = self._model
        stmt = (
            select(model)
            .order_by(model.created_at.desc(), model.id.desc())  # type: ignore[union-attr, attr-defined]
            .offset(offset)
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                return list((await session.execute(stmt)).scalars().all())
        except SQLAlchemyError as exc:
            msg = f"Failed to list recent jobs: {exc}"
            raise StorageError(msg) from exc
