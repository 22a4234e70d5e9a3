"""Tests for RevueSettings."""

from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from revue.config import RevueSettings
from revue.embedding.filters import DEFAULT_ALLOWED_EXTENSIONS


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # Keep a developer's .env or REVUE_* variables out of the tests
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("REVUE_"):
            monkeypatch.delenv(key)


class TestDefaults:
    def test_defaults(self):
        s = RevueSettings()
        assert s.database_url == "sqlite+aiosqlite:///revue.db"
        assert s.queue_max_attempts == 3
        assert s.queue_backoff_base == 30.0
        assert s.queue_backoff_cap == 900.0
        assert s.pipeline_batch_size == 3
        assert s.pipeline_item_delay == 0.2
        assert s.pipeline_batch_delay == 2.0
        assert s.pipeline_max_chunk_size == 8000
        assert s.context_min_direct_matches == 5
        assert s.context_max_direct_results == 10
        assert s.context_per_file_k == 3
        assert s.context_max_results == 15
        assert s.claim_max_processing_seconds == 1800.0
        assert s.queue_stall_timeout == 1800.0
        assert s.queue_stall_check_interval == 60.0
        assert set(s.allowed_extensions) == DEFAULT_ALLOWED_EXTENSIONS


class TestEnvironment:
    def test_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("REVUE_DATABASE_URL", "postgresql+asyncpg://db/revue")
        monkeypatch.setenv("REVUE_QUEUE_CONCURRENCY", "8")
        monkeypatch.setenv("REVUE_EMBEDDING_DIMENSIONS", "768")

        s = RevueSettings()

        assert s.database_url == "postgresql+asyncpg://db/revue"
        assert s.queue_concurrency == 8
        assert s.embedding_dimensions == 768

    def test_extensions_as_csv(self, monkeypatch):
        monkeypatch.setenv("REVUE_ALLOWED_EXTENSIONS", "py, .TS ,md")
        assert RevueSettings().allowed_extensions == ["py", "ts", "md"]

    def test_extensions_as_json(self, monkeypatch):
        monkeypatch.setenv("REVUE_ALLOWED_EXTENSIONS", '["py", "go"]')
        assert RevueSettings().allowed_extensions == ["py", "go"]

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("REVUE_QUEUE_MAX_ATTEMPTS=7\n")
        assert RevueSettings().queue_max_attempts == 7

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("REVUE_QUEUE_MAX_ATTEMPTS", "0")
        with pytest.raises(ValidationError):
            RevueSettings()

    def test_constructor_overrides(self):
        assert RevueSettings(pipeline_batch_size=10).pipeline_batch_size == 10
