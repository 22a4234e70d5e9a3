"""Revue: async facade wiring intake, queue, pipeline, store and context retrieval."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from revue.config import RevueSettings
from revue.context.engine import ContextEngine
from revue.embedding.circuit import provider_breaker
from revue.embedding.filters import FileFilter
from revue.embedding.pipeline import EmbeddingPipeline
from revue.embedding.providers.openai import OpenAIEmbedding
from revue.intake.events import parse_event
from revue.intake.guard import IntakeGuard
from revue.jobs.queue import JobQueue
from revue.jobs.worker import JobWorker
from revue.models.claims import ProcessingClaim
from revue.models.embeddings import EmbeddingRecord
from revue.models.jobs import EmbeddingJob, JobPriority
from revue.sources.local import LocalRepositorySource
from revue.store.dialect import get_dialect
from revue.store.embeddings import EmbeddingStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from revue.context.types import ChangedFile, ContextResult
    from revue.embedding.providers._protocol import EmbeddingProvider
    from revue.intake.events import RecognizedEvent
    from revue.intake.guard import ClaimResult
    from revue.sources._protocol import ContentSource

logger = logging.getLogger(__name__)

EventHandler = Callable[["RecognizedEvent"], Awaitable[Any]]


class Revue:
    """Explicitly wired service graph for one process.

    Build it from an engine, a provider and a content source::

        engine = create_async_engine("postgresql+asyncpg://...")
        revue = Revue(engine, OpenAIEmbedding(), LocalRepositorySource("/repos"))
        await revue.create_tables()
        revue.start()

    or from settings with :meth:`from_settings`.  Several processes may run
    against the same database; the intake guard and the job queue
    coordinate through it.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        provider: EmbeddingProvider,
        source: ContentSource,
        *,
        settings: RevueSettings | None = None,
        owns_engine: bool = False,
    ) -> None:
        s = settings or RevueSettings()
        self._engine = engine
        self._owns_engine = owns_engine
        self._provider = provider
        self._source = source
        self._closed = False

        self._session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        dialect = get_dialect(engine)

        self.guard = IntakeGuard(
            self._session_factory,
            dialect=dialect,
            instance_id=s.instance_id,
            max_processing_seconds=s.claim_max_processing_seconds,
            reap_interval_seconds=s.claim_reap_interval_seconds,
        )
        self.queue = JobQueue(
            self._session_factory,
            max_attempts=s.queue_max_attempts,
            backoff_base=s.queue_backoff_base,
            backoff_cap=s.queue_backoff_cap,
            backoff_jitter=s.queue_backoff_jitter,
            poll_interval=s.await_poll_interval,
            await_timeout=s.await_timeout,
        )
        self.store = EmbeddingStore(self._session_factory, dialect=dialect)
        self.pipeline = EmbeddingPipeline(
            provider,
            file_filter=FileFilter(
                allowed_extensions=s.allowed_extensions,
                max_content_length=s.pipeline_max_content_length,
            ),
            breaker=provider_breaker(
                fail_max=s.circuit_failure_threshold,
                reset_timeout=s.circuit_cooldown_seconds,
            ),
            batch_size=s.pipeline_batch_size,
            item_delay=s.pipeline_item_delay,
            batch_delay=s.pipeline_batch_delay,
            max_retries=s.pipeline_max_retries,
            retry_base_delay=s.pipeline_retry_base_delay,
            retry_max_delay=s.pipeline_retry_max_delay,
            retry_jitter=s.pipeline_retry_jitter,
            max_chunk_size=s.pipeline_max_chunk_size,
        )
        self.worker = JobWorker(
            self.queue,
            self.pipeline,
            self.store,
            source,
            concurrency=s.queue_concurrency,
            poll_interval=s.queue_poll_interval,
            stall_timeout=s.queue_stall_timeout,
            stall_check_interval=s.queue_stall_check_interval,
        )
        self.context = ContextEngine(
            self.store,
            self.pipeline,
            self.queue,
            min_direct_matches=s.context_min_direct_matches,
            max_direct_results=s.context_max_direct_results,
            max_query_content=s.context_max_query_content,
            per_file_k=s.context_per_file_k,
            max_results=s.context_max_results,
            excerpt_length=s.context_excerpt_length,
        )

    @classmethod
    def from_settings(
        cls,
        settings: RevueSettings | None = None,
        *,
        provider: EmbeddingProvider | None = None,
        source: ContentSource | None = None,
    ) -> Revue:
        """Build the engine, provider and source described by *settings*."""
        s = settings or RevueSettings()
        engine = create_async_engine(s.database_url)
        if provider is None:
            provider = OpenAIEmbedding(
                model=s.embedding_model,
                base_url=s.embedding_base_url,
                dimensions=s.embedding_dimensions,
                api_key=s.embedding_api_key,
                timeout=s.embedding_timeout,
            )
        if source is None:
            source = LocalRepositorySource(s.repositories_root)
        return cls(engine, provider, source, settings=s, owns_engine=True)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def create_tables(self) -> None:
        """Create the claim, job and embedding tables if they do not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(
                SQLModel.metadata.create_all,
                tables=[
                    ProcessingClaim.__table__,  # type: ignore[attr-defined]
                    EmbeddingJob.__table__,  # type: ignore[attr-defined]
                    EmbeddingRecord.__table__,  # type: ignore[attr-defined]
                ],
            )

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def handle_event(self, payload: Any, handler: EventHandler) -> ClaimResult:
        """Parse, claim and process one webhook payload exactly once.

        *handler* runs only if the claim is accepted.  The claim is completed
        when it returns and failed (re-raising) when it raises, so the origin
        can redeliver.
        """
        event = parse_event(payload)
        async with self.guard.claiming(event) as result:
            if result.accepted:
                await handler(event)  # type: ignore[arg-type]
        return result

    # ------------------------------------------------------------------
    # Embedding jobs
    # ------------------------------------------------------------------

    async def request_embedding(
        self,
        resource_id: str,
        source_location: str,
        *,
        priority: int = JobPriority.NORMAL,
        correlation_id: str | None = None,
    ) -> EmbeddingJob:
        return await self.queue.enqueue(
            resource_id,
            source_location,
            correlation_id=correlation_id,
            priority=priority,
        )

    async def trigger_reembedding(self, resource_id: str, source_location: str) -> EmbeddingJob:
        """Queue a high-priority job that replaces every embedding of *resource_id*."""
        return await self.queue.enqueue(
            resource_id,
            source_location,
            priority=JobPriority.HIGH,
            is_reembedding=True,
        )

    async def ensure_embeddings(
        self,
        resource_id: str,
        source_location: str,
        *,
        wait: bool = False,
        timeout: float | None = None,
    ) -> EmbeddingJob | None:
        """Make sure *resource_id* has, or is getting, embeddings.

        Returns None if embeddings already exist.  Otherwise reuses an active
        job or enqueues a high-priority one, optionally waits up to *timeout*
        for it, and returns the job's latest state.
        """
        if await self.store.count_for_resource(resource_id) > 0:
            return None
        job = await self.queue.active_job_for(resource_id)
        if job is None:
            logger.info("No embeddings for %s; queueing embedding job", resource_id)
            job = await self.queue.enqueue(resource_id, source_location, priority=JobPriority.HIGH)
        if not wait:
            return job
        waited = await self.queue.await_completion(job.correlation_id, timeout)
        return waited or job

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def get_context(
        self,
        resource_id: str,
        changed_files: Sequence[ChangedFile],
        *,
        branch: str | None = None,
    ) -> ContextResult:
        return await self.context.get_context(resource_id, changed_files, branch=branch)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the embedding workers, the stalled-job sweeper and the stale-claim reaper."""
        self.worker.start()
        self.guard.start_reaper()

    async def stop(self) -> None:
        await self.worker.stop()
        await self.guard.stop_reaper()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.stop()
        close = getattr(self._provider, "close", None)
        if close is not None:
            await close()
        if self._owns_engine:
            await self._engine.dispose()

    async def __aenter__(self) -> Revue:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
