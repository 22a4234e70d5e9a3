"""Tests for JobWorker."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeEmbeddingProvider, StaticSource, make_pipeline

from revue.embedding.circuit import provider_breaker
from revue.embedding.types import SourceFile
from revue.exceptions import (
    ContentSourceError,
    PermanentJobError,
    ProviderPermanentError,
    ProviderTransientError,
    StorageError,
)
from revue.jobs.queue import JobQueue
from revue.jobs.worker import JobWorker, is_job_retryable
from revue.models.embeddings import EmbeddingRecord
from revue.models.jobs import JobStatus
from revue.store.embeddings import EmbeddingStore

FILES = {
    "42": [
        SourceFile("app.py", "def app():\n    return 1\n", "python"),
        SourceFile("util.py", "def util():\n    return 2\n", "python"),
        SourceFile("logo.png", "\x89PNG\0\0"),
    ]
}


class RejectingSource(StaticSource):
    async def fetch(self, resource_id, source_location, revision=None):
        msg = f"{resource_id} is archived"
        raise PermanentJobError(msg)


def make_worker(session_factory, *, provider=None, source=None, **pipeline_kwargs):
    queue = JobQueue(session_factory, backoff_jitter=0)
    store = EmbeddingStore(session_factory)
    pipeline = make_pipeline(provider or FakeEmbeddingProvider(), **pipeline_kwargs)
    worker = JobWorker(
        queue,
        pipeline,
        store,
        source or StaticSource(FILES),
        poll_interval=0.01,
        drain_timeout=5,
    )
    return worker, queue, store


class TestIsJobRetryable:
    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (ProviderTransientError("busy"), True),
            (ContentSourceError("clone failed"), True),
            (RuntimeError("oops"), True),
            (PermanentJobError("archived"), False),
            (ProviderPermanentError("bad request"), False),
        ],
    )
    def test_policy(self, exc, expected):
        assert is_job_retryable(exc) is expected


class TestRunOnce:
    async def test_idle_queue(self, session_factory):
        worker, _, _ = make_worker(session_factory)
        assert await worker.run_once() is None

    async def test_processes_job(self, session_factory):
        worker, queue, store = make_worker(session_factory)
        await queue.enqueue("42", "/repos/42")

        job = await worker.run_once()

        assert job.status == JobStatus.COMPLETED.value
        records = await store.list_for_resource("42")
        assert [r.file_path for r in records] == ["app.py", "util.py"]
        assert all(r.revision_id == "abc123" for r in records)

    async def test_upsert_keeps_other_records(self, session_factory):
        worker, queue, store = make_worker(session_factory)
        await store.upsert_records(
            [EmbeddingRecord(resource_id="42", file_path="old.py", content="x", vector=[1.0])]
        )
        await queue.enqueue("42")
        await worker.run_once()
        assert await store.count_for_resource("42") == 3

    async def test_reembedding_replaces_records(self, session_factory):
        worker, queue, store = make_worker(session_factory)
        await store.upsert_records(
            [EmbeddingRecord(resource_id="42", file_path="old.py", content="x", vector=[1.0])]
        )
        await queue.enqueue("42", is_reembedding=True)

        await worker.run_once()

        records = await store.list_for_resource("42")
        assert [r.file_path for r in records] == ["app.py", "util.py"]

    async def test_source_error_is_retried(self, session_factory):
        worker, queue, _ = make_worker(session_factory, source=StaticSource({}))
        await queue.enqueue("42")

        job = await worker.run_once()

        assert job.status == JobStatus.RETRYING.value
        assert "unknown resource" in job.error

    async def test_permanent_error_fails_job(self, session_factory):
        worker, queue, _ = make_worker(session_factory, source=RejectingSource({}))
        await queue.enqueue("42")

        job = await worker.run_once()

        assert job.status == JobStatus.FAILED.value
        assert job.attempts == 1
        assert "archived" in job.error

    async def test_item_failures_do_not_fail_job(self, session_factory):
        provider = FakeEmbeddingProvider(fail_on=("util",))
        worker, queue, store = make_worker(session_factory, provider=provider)
        await queue.enqueue("42")

        job = await worker.run_once()

        assert job.status == JobStatus.COMPLETED.value
        assert [r.file_path for r in await store.list_for_resource("42")] == ["app.py"]

    async def test_open_circuit_retries_job_and_keeps_partial_records(self, session_factory):
        provider = FakeEmbeddingProvider(fail_on=("util",))
        worker, queue, store = make_worker(
            session_factory,
            provider=provider,
            batch_size=1,
            max_retries=0,
            breaker=provider_breaker(fail_max=1),
        )
        await queue.enqueue("42")

        job = await worker.run_once()

        assert job.status == JobStatus.RETRYING.value
        assert "circuit" in job.error
        assert [r.file_path for r in await store.list_for_resource("42")] == ["app.py"]

    def test_invalid_concurrency(self, session_factory):
        queue = JobQueue(session_factory)
        with pytest.raises(ValueError, match="concurrency"):
            JobWorker(queue, make_pipeline(FakeEmbeddingProvider()), None, None, concurrency=0)  # type: ignore[arg-type]


class TestBackgroundLoop:
    async def test_start_processes_queue_and_stop_drains(self, file_session_factory):
        files = {str(i): FILES["42"] for i in range(4)}
        worker, queue, store = make_worker(file_session_factory, source=StaticSource(files))
        for resource_id in files:
            await queue.enqueue(resource_id)

        worker.start()
        assert worker.running
        try:
            for _ in range(200):
                if (await queue.stats()).completed == 4:
                    break
                await asyncio.sleep(0.02)
        finally:
            await worker.stop()

        assert not worker.running
        assert (await queue.stats()).completed == 4
        assert await store.count_for_resource("3") == 2

    async def test_start_twice_is_noop(self, file_session_factory):
        worker, _, _ = make_worker(file_session_factory)
        worker.start()
        tasks = list(worker._tasks)
        worker.start()
        assert worker._tasks == tasks
        await worker.stop()

    async def test_stop_without_start(self, session_factory):
        worker, _, _ = make_worker(session_factory)
        await worker.stop()


class TestStallSweeper:
    async def test_abandoned_job_is_released_and_rerun(self, file_session_factory):
        queue = JobQueue(file_session_factory, backoff_jitter=0, max_attempts=5)
        await queue.enqueue("42")
        # Claimed by an instance that then died
        abandoned = await queue.dequeue_next()
        worker = JobWorker(
            queue,
            make_pipeline(FakeEmbeddingProvider()),
            EmbeddingStore(file_session_factory),
            StaticSource(FILES),
            poll_interval=0.01,
            stall_timeout=0.2,
            stall_check_interval=0.05,
        )

        worker.start()
        try:
            for _ in range(200):
                job = await queue.get_by_correlation_id(abandoned.correlation_id)
                if job.status == JobStatus.COMPLETED.value:
                    break
                await asyncio.sleep(0.02)
        finally:
            await worker.stop()

        assert job.status == JobStatus.COMPLETED.value
        assert job.attempts >= 2
        assert worker._sweeper is None

    async def test_sweep_failure_does_not_stop_sweeper(self, file_session_factory):
        worker, queue, _ = make_worker(file_session_factory)
        calls = 0

        async def flaky_release(older_than_seconds, now=None):
            nonlocal calls
            calls += 1
            if calls == 1:
                msg = "db down"
                raise StorageError(msg)
            return 0

        queue.release_stalled = flaky_release
        worker._stall_check_interval = 0.01
        worker.start()
        try:
            for _ in range(100):
                if calls >= 2:
                    break
                await asyncio.sleep(0.01)
        finally:
            await worker.stop()

        assert calls >= 2
