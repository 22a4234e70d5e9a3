"""JobWorker: runs embedding jobs from the queue."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from revue.exceptions import PermanentJobError, ProviderCircuitOpenError, ProviderPermanentError

if TYPE_CHECKING:
    from revue.embedding.pipeline import EmbeddingPipeline
    from revue.jobs.queue import JobQueue
    from revue.models.jobs import EmbeddingJob
    from revue.sources._protocol import ContentSource
    from revue.store.embeddings import EmbeddingStore

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 2
DEFAULT_STALL_TIMEOUT = 30 * 60.0
DEFAULT_STALL_CHECK_INTERVAL = 60.0


def is_job_retryable(exc: BaseException) -> bool:
    """Job-level retry policy: everything but explicitly permanent failures."""
    return not isinstance(exc, (PermanentJobError, ProviderPermanentError))


class JobWorker:
    """Pulls jobs from a :class:`JobQueue` and runs them through the pipeline.

    Each job fetches the resource's files from the content source, embeds
    them, and persists the records; a re-embedding job replaces every record
    of the resource.  Any exception is turned into a failed attempt, so one
    bad job never stops the loop.  A run in which the provider circuit
    opened and items were skipped keeps its partial records but counts as a
    retryable failure.

    Alongside the runners, a sweeper task calls
    :meth:`JobQueue.release_stalled` every *stall_check_interval* seconds so
    jobs left ``processing`` by a crashed instance for longer than
    *stall_timeout* seconds are retried.
    """

    def __init__(
        self,
        queue: JobQueue,
        pipeline: EmbeddingPipeline,
        store: EmbeddingStore,
        source: ContentSource,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        poll_interval: float = 2.0,
        drain_timeout: float = 30.0,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT,
        stall_check_interval: float = DEFAULT_STALL_CHECK_INTERVAL,
    ) -> None:
        if concurrency < 1:
            msg = f"concurrency must be at least 1, got {concurrency}"
            raise ValueError(msg)
        self._queue = queue
        self._pipeline = pipeline
        self._store = store
        self._source = source
        self._concurrency = concurrency
        self._poll_interval = poll_interval
        self._drain_timeout = drain_timeout
        self._stall_timeout = stall_timeout
        self._stall_check_interval = stall_check_interval
        self._tasks: list[asyncio.Task[None]] = []
        self._sweeper: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def run_once(self) -> EmbeddingJob | None:
        """Process one eligible job. Returns its final state, or None if the queue was idle."""
        job = await self._queue.dequeue_next()
        if job is None:
            return None
        return await self.process(job)

    async def process(self, job: EmbeddingJob) -> EmbeddingJob:
        """Run a dequeued job and record its outcome in the queue."""
        try:
            await self._execute(job)
        except Exception as exc:
            logger.warning("Job %s raised: %s", job.correlation_id, exc, exc_info=True)
            return await self._queue.mark_failed_attempt(
                job,
                str(exc) or type(exc).__name__,
                retryable=is_job_retryable(exc),
            )
        return await self._queue.mark_completed(job)

    async def _execute(self, job: EmbeddingJob) -> None:
        snapshot = await self._source.fetch(job.resource_id, job.source_location)
        result = await self._pipeline.embed(
            snapshot.files,
            resource_id=job.resource_id,
            revision_id=snapshot.revision_id,
            branch=snapshot.branch,
        )
        if job.is_reembedding:
            await self._store.replace_resource(job.resource_id, result.records)
        else:
            await self._store.upsert_records(result.records)

        logger.info(
            "Job %s: %d record(s) stored, %d failure(s), %d of %d file(s) accepted",
            job.correlation_id,
            len(result.records),
            len(result.failures),
            result.report.accepted,
            result.report.total,
        )
        if result.circuit_tripped and result.failures:
            msg = (
                f"Provider circuit opened; {len(result.failures)} item(s) "
                f"of {job.resource_id} were not embedded"
            )
            raise ProviderCircuitOpenError(msg)

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start *concurrency* runner tasks. No-op if already running."""
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._run_loop(i), name=f"revue-worker-{i}")
            for i in range(self._concurrency)
        ]
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="revue-stall-sweeper")
        logger.info("Started %d embedding worker(s)", self._concurrency)

    async def stop(self) -> None:
        """Let in-flight jobs finish (up to the drain timeout), then cancel the runners."""
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        if not self._tasks:
            return
        self._stopping.set()
        tasks, self._tasks = self._tasks, []
        _, pending = await asyncio.wait(tasks, timeout=self._drain_timeout)
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Stopped embedding workers")

    async def _run_loop(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                job = await self.run_once()
            except Exception:
                logger.exception("Worker %d failed to run a job", index)
                job = None
            if job is None:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._stall_check_interval)
            try:
                await self._queue.release_stalled(self._stall_timeout)
            except Exception:
                logger.exception("Stalled-job sweep failed")
