"""Tests for ContextEngine ranking and summaries."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeEmbeddingProvider, make_pipeline

from revue.context import ChangedFile, ContextEngine
from revue.context.engine import _latest_per_path
from revue.context.summary import IN_PROGRESS_SUMMARY, NO_CONTEXT_SUMMARY, excerpt, render_summary
from revue.embedding.circuit import provider_breaker
from revue.embedding.types import SourceFile
from revue.exceptions import StorageError
from revue.jobs.queue import JobQueue
from revue.models.embeddings import EmbeddingRecord

REPO = [
    SourceFile("auth/login.py", "def login(user, password):\n    return session_token(user)\n", "python"),
    SourceFile("auth/session.py", "def session_token(user):\n    return refresh(session, token)\n", "python"),
    SourceFile("billing/invoice.py", "def invoice(amount, currency):\n    return amount\n", "python"),
    SourceFile("billing/tax.py", "def tax(rate, currency):\n    return rate\n", "python"),
]


@pytest.fixture
def context_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider(dim=256)


@pytest.fixture
async def seeded_store(embedding_store, context_provider):
    result = await make_pipeline(context_provider).embed(REPO, resource_id="42")
    await embedding_store.upsert_records(result.records)
    return embedding_store


@pytest.fixture
def engine(seeded_store, context_provider) -> ContextEngine:
    return ContextEngine(
        seeded_store,
        make_pipeline(context_provider),
        min_direct_matches=2,
        per_file_k=1,
    )


class TestGetContext:
    async def test_direct_match_then_neighbours(self, engine):
        change = ChangedFile("auth/login.py", "def login(user, password, session, token): pass")

        result = await engine.get_context("42", [change])

        paths = [r.file_path for r in result.ranked_files]
        assert paths == ["auth/login.py", "auth/session.py"]
        assert result.direct_matches == 1
        assert result.embedding_in_progress is False

    async def test_enough_direct_matches_skips_similarity(self, engine, context_provider):
        changes = [
            ChangedFile("billing/tax.py", "x"),
            ChangedFile("billing/invoice.py", "y"),
        ]
        calls_before = len(context_provider.calls)

        result = await engine.get_context("42", changes)

        assert [r.file_path for r in result.ranked_files] == [
            "billing/invoice.py",
            "billing/tax.py",
        ]
        assert result.direct_matches == 2
        assert len(context_provider.calls) == calls_before

    async def test_direct_results_are_capped(self, seeded_store, context_provider):
        engine = ContextEngine(
            seeded_store,
            make_pipeline(context_provider),
            min_direct_matches=1,
            max_direct_results=1,
        )
        changes = [ChangedFile(f.path, f.content) for f in REPO]
        result = await engine.get_context("42", changes)
        assert len(result.ranked_files) == 1

    async def test_rename_matches_old_path(self, engine):
        change = ChangedFile("auth/signin.py", old_path="auth/login.py", deleted=False)
        result = await engine.get_context("42", [change])
        assert [r.file_path for r in result.ranked_files] == ["auth/login.py"]

    async def test_deleted_file_is_not_a_query(self, engine, context_provider):
        calls_before = len(context_provider.calls)
        change = ChangedFile("auth/login.py", "def login(): pass", deleted=True)

        result = await engine.get_context("42", [change])

        assert [r.file_path for r in result.ranked_files] == ["auth/login.py"]
        assert len(context_provider.calls) == calls_before

    async def test_oversized_content_is_not_a_query(self, seeded_store, context_provider):
        engine = ContextEngine(seeded_store, make_pipeline(context_provider), max_query_content=5)
        calls_before = len(context_provider.calls)
        await engine.get_context("42", [ChangedFile("new.py", "def something_long(): pass")])
        assert len(context_provider.calls) == calls_before

    async def test_results_capped_at_max(self, seeded_store, context_provider):
        engine = ContextEngine(
            seeded_store, make_pipeline(context_provider), per_file_k=3, max_results=2
        )
        result = await engine.get_context("42", [ChangedFile("new.py", "def tax(currency): pass")])
        assert len(result.ranked_files) == 2

    async def test_deterministic(self, engine):
        changes = [
            ChangedFile("auth/login.py", "def login(user): pass"),
            ChangedFile("new/module.py", "def invoice_tax(amount, rate, currency): pass"),
        ]
        first = await engine.get_context("42", changes)
        second = await engine.get_context("42", changes)
        assert [r.file_path for r in first.ranked_files] == [
            r.file_path for r in second.ranked_files
        ]
        assert first.summary == second.summary

    async def test_chunks_of_changed_file_are_direct_matches(self, embedding_store, context_provider):
        await embedding_store.upsert_records(
            [
                EmbeddingRecord(resource_id="9", file_path="big.py#chunk1", content="b", vector=[1.0]),
                EmbeddingRecord(resource_id="9", file_path="big.py#chunk0", content="a", vector=[1.0]),
                EmbeddingRecord(resource_id="9", file_path="other.py", content="c", vector=[1.0]),
            ]
        )
        engine = ContextEngine(embedding_store, make_pipeline(context_provider), min_direct_matches=2)

        result = await engine.get_context("9", [ChangedFile("big.py", "changed")])

        assert [r.file_path for r in result.ranked_files] == ["big.py#chunk0", "big.py#chunk1"]

    async def test_provider_failure_keeps_direct_matches(self, seeded_store):
        provider = FakeEmbeddingProvider(always_fail=True)
        pipeline = make_pipeline(provider, max_retries=0, breaker=provider_breaker(fail_max=1))
        engine = ContextEngine(seeded_store, pipeline)

        result = await engine.get_context("42", [ChangedFile("auth/login.py", "def login(): pass")])

        assert [r.file_path for r in result.ranked_files] == ["auth/login.py"]

    async def test_path_on_two_branches_is_ranked_once(self, embedding_store, context_provider):
        await embedding_store.upsert_records(
            [EmbeddingRecord(resource_id="7", file_path="app.py", content="main", vector=[1.0])]
        )
        await asyncio.sleep(0.01)
        await embedding_store.upsert_records(
            [
                EmbeddingRecord(
                    resource_id="7", file_path="app.py", content="dev", vector=[1.0], branch="dev"
                )
            ]
        )
        engine = ContextEngine(embedding_store, make_pipeline(context_provider))

        result = await engine.get_context("7", [ChangedFile("app.py", "changed")])
        assert [(r.file_path, r.branch) for r in result.ranked_files] == [("app.py", "dev")]

        on_main = await engine.get_context("7", [ChangedFile("app.py", "changed")], branch="main")
        assert [(r.file_path, r.branch) for r in on_main.ranked_files] == [("app.py", "main")]

    async def test_similarity_reuses_loaded_records(
        self, seeded_store, context_provider, monkeypatch
    ):
        loads = 0
        list_for_resource = seeded_store.list_for_resource

        async def counting_list(*args, **kwargs):
            nonlocal loads
            loads += 1
            return await list_for_resource(*args, **kwargs)

        monkeypatch.setattr(seeded_store, "list_for_resource", counting_list)
        engine = ContextEngine(seeded_store, make_pipeline(context_provider), per_file_k=1)
        changes = [
            ChangedFile("auth/sso.py", "def login(user, password): return session_token(user)"),
            ChangedFile("billing/refund.py", "def refund(amount, currency): return amount"),
        ]

        result = await engine.get_context("42", changes)

        assert loads == 1
        assert len(result.ranked_files) == 2


class TestLatestPerPath:
    def test_newest_record_wins(self):
        def on(branch: str, month: int) -> EmbeddingRecord:
            return EmbeddingRecord(
                resource_id="1",
                file_path="a.py",
                content=branch,
                vector=[1.0],
                branch=branch,
                updated_at=datetime(2026, month, 1, tzinfo=UTC),
            )

        other = EmbeddingRecord(resource_id="1", file_path="b.py", content="b", vector=[1.0])

        assert [r.content for r in _latest_per_path([on("dev", 2), on("main", 1), other])] == [
            "dev",
            "b",
        ]
        assert [r.content for r in _latest_per_path([on("main", 1), on("dev", 2)])] == ["dev"]


class TestEmptyContext:
    async def test_no_embeddings(self, embedding_store, pipeline):
        engine = ContextEngine(embedding_store, pipeline)
        result = await engine.get_context("42", [ChangedFile("a.py", "x = 1")])
        assert result.ranked_files == []
        assert result.summary == NO_CONTEXT_SUMMARY
        assert result.embedding_in_progress is False

    async def test_embedding_in_progress(self, embedding_store, pipeline, session_factory):
        queue = JobQueue(session_factory)
        await queue.enqueue("42")
        engine = ContextEngine(embedding_store, pipeline, queue)

        result = await engine.get_context("42", [ChangedFile("a.py", "x = 1")])

        assert result.summary == IN_PROGRESS_SUMMARY
        assert result.embedding_in_progress is True

    async def test_store_failure_yields_no_context(self, pipeline):
        store = MagicMock()
        store.list_for_resource = AsyncMock(side_effect=StorageError("db down"))
        engine = ContextEngine(store, pipeline)

        result = await engine.get_context("42", [ChangedFile("a.py", "x = 1")])

        assert result.summary == NO_CONTEXT_SUMMARY
        assert result.ranked_files == []


class TestSummary:
    def test_render(self):
        records = [
            EmbeddingRecord(resource_id="1", file_path="a.py", content="x = 1", language="python"),
            EmbeddingRecord(resource_id="1", file_path="b.md", content="# Title", language="markdown"),
        ]
        summary = render_summary(records)
        assert summary.startswith("Project context (2 relevant files):\n\n")
        assert "File: a.py (python)\n```python\nx = 1\n```" in summary
        assert "File: b.md (markdown)\n```markdown\n# Title\n```" in summary

    def test_render_empty(self):
        assert render_summary([]) == NO_CONTEXT_SUMMARY

    def test_excerpt_truncates(self):
        assert excerpt("abcdef", 3) == "abc..."
        assert excerpt("abc", 3) == "abc"
