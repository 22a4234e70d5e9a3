"""Shared fixtures for revue tests."""

from __future__ import annotations

import hashlib
import math
import re
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import revue.models  # noqa: F401  (registers tables on SQLModel.metadata)
from revue.embedding.pipeline import EmbeddingPipeline
from revue.embedding.types import SourceFile
from revue.exceptions import ContentSourceError, ProviderPermanentError, ProviderTransientError
from revue.sources._protocol import SourceSnapshot
from revue.store.embeddings import EmbeddingStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

_TOKEN = re.compile(r"\w+")


class FakeEmbeddingProvider:
    """Deterministic bag-of-words provider.

    Each token is hashed into one of *dim* buckets, so texts sharing words
    get similar vectors.  Texts containing a marker in *fail_on* raise a
    permanent error; the first *transient_failures* calls raise a transient one.
    """

    def __init__(
        self,
        dim: int = 32,
        *,
        fail_on: tuple[str, ...] = (),
        transient_failures: int = 0,
        always_fail: bool = False,
    ) -> None:
        self.dim = dim
        self.fail_on = fail_on
        self.transient_failures = transient_failures
        self.always_fail = always_fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.always_fail:
            msg = "provider down"
            raise ProviderTransientError(msg)
        if self.transient_failures > 0:
            self.transient_failures -= 1
            msg = "temporarily unavailable"
            raise ProviderTransientError(msg)
        for marker in self.fail_on:
            if marker in text:
                msg = f"cannot embed text containing {marker!r}"
                raise ProviderPermanentError(msg)
        return self.vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dim
        for token in _TOKEN.findall(text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dim
            vec[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vec)) or 1.0
        return [v / norm for v in vec]

    @property
    def dimensions(self) -> int:
        return self.dim

    @property
    def model_name(self) -> str:
        return "fake-bow"


class StaticSource:
    """Content source serving a fixed file list per resource."""

    def __init__(self, files: dict[str, list[SourceFile]], *, revision_id: str = "abc123") -> None:
        self.files = files
        self.revision_id = revision_id
        self.fetches: list[str] = []

    async def fetch(
        self,
        resource_id: str,
        source_location: str,
        revision: str | None = None,
    ) -> SourceSnapshot:
        self.fetches.append(resource_id)
        if resource_id not in self.files:
            msg = f"unknown resource {resource_id!r}"
            raise ContentSourceError(msg)
        return SourceSnapshot(
            files=list(self.files[resource_id]),
            revision_id=revision or self.revision_id,
            branch="main",
        )


def make_pipeline(provider, **kwargs) -> EmbeddingPipeline:
    """Pipeline with every delay disabled."""
    options = {
        "item_delay": 0,
        "batch_delay": 0,
        "retry_base_delay": 0,
        "retry_jitter": 0,
    }
    options.update(kwargs)
    return EmbeddingPipeline(provider, **options)


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def file_db_url(tmp_path: Path) -> str:
    """URL of a SQLite file database, for tests needing several connections."""
    return f"sqlite+aiosqlite:///{tmp_path / 'revue.db'}"


@pytest.fixture
async def file_engine(file_db_url: str) -> AsyncIterator[AsyncEngine]:
    eng = create_async_engine(file_db_url, echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def file_session_factory(file_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def pipeline(provider: FakeEmbeddingProvider) -> EmbeddingPipeline:
    return make_pipeline(provider)


@pytest.fixture
def embedding_store(session_factory: async_sessionmaker[AsyncSession]) -> EmbeddingStore:
    return EmbeddingStore(session_factory)
