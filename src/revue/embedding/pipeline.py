"""EmbeddingPipeline: filter, chunk and vectorize the files of a resource."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

import pybreaker

from revue.embedding.chunking import DEFAULT_MAX_CHUNK_SIZE, chunk_code_file
from revue.embedding.circuit import CircuitTransitionListener, provider_breaker
from revue.embedding.filters import FileFilter
from revue.embedding.providers._protocol import SupportsHealthCheck
from revue.embedding.retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_JITTER,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RETRIES,
    retry_async,
)
from revue.embedding.types import EmbedFailure, EmbedResult, SourceFile
from revue.exceptions import ProviderCircuitOpenError, ProviderPermanentError
from revue.models.embeddings import EmbeddingRecord

if TYPE_CHECKING:
    from revue.embedding.providers._protocol import EmbeddingProvider

logger = logging.getLogger(__name__)


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()


class EmbeddingPipeline:
    """Turns source files into embedding records.

    Files go through the :class:`FileFilter`, oversized files are chunked on
    line boundaries, and the resulting items are vectorized in batches of
    *batch_size*.  Items in a batch are started *item_delay* seconds apart
    and run concurrently; batches are separated by *batch_delay* seconds.
    Each provider call is retried with exponential backoff and jitter, and
    all calls share one pybreaker circuit breaker.  While the circuit is not
    closed only one item at a time may attempt the half-open trial; the rest
    fail fast.  An item that cannot be vectorized becomes an
    :class:`EmbedFailure` and never aborts the run.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        file_filter: FileFilter | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
        batch_size: int = 3,
        item_delay: float = 0.2,
        batch_delay: float = 2.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        retry_max_delay: float = DEFAULT_MAX_DELAY,
        retry_jitter: float = DEFAULT_JITTER,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            msg = f"batch_size must be at least 1, got {batch_size}"
            raise ValueError(msg)
        self._provider = provider
        self._filter = file_filter or FileFilter()
        self._breaker = breaker or provider_breaker()
        self._transitions = CircuitTransitionListener()
        self._breaker.add_listener(self._transitions)
        self._trial_lock = asyncio.Lock()
        self._batch_size = batch_size
        self._item_delay = item_delay
        self._batch_delay = batch_delay
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._retry_jitter = retry_jitter
        self._max_chunk_size = max_chunk_size
        self._sleep = sleep

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        return self._breaker

    @property
    def file_filter(self) -> FileFilter:
        return self._filter

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(
        self,
        files: Sequence[SourceFile],
        *,
        resource_id: str,
        revision_id: str = "",
        branch: str = "main",
    ) -> EmbedResult:
        """Vectorize every eligible file of *files* for *resource_id*."""
        accepted, report = self._filter.filter(files)
        items: list[SourceFile] = []
        for file in accepted:
            items.extend(chunk_code_file(file, self._max_chunk_size))

        records: list[EmbeddingRecord] = []
        failures: list[EmbedFailure] = []
        opened_before = self._transitions.times_opened
        tripped = self._breaker.current_state != pybreaker.STATE_CLOSED
        total_batches = (len(items) + self._batch_size - 1) // self._batch_size

        for number, start in enumerate(range(0, len(items), self._batch_size), start=1):
            batch = items[start : start + self._batch_size]
            logger.debug("Processing batch %d of %d (%d items)", number, total_batches, len(batch))
            outcomes = await asyncio.gather(
                *(self._embed_item(item, offset) for offset, item in enumerate(batch))
            )
            for item, outcome in zip(batch, outcomes, strict=True):
                if isinstance(outcome, EmbedFailure):
                    failures.append(outcome)
                    continue
                records.append(
                    EmbeddingRecord(
                        resource_id=resource_id,
                        file_path=item.path,
                        content=item.content,
                        vector=outcome,
                        language=item.language,
                        revision_id=revision_id,
                        branch=branch,
                        content_hash=content_hash(item.content),
                    )
                )
            if self._transitions.times_opened > opened_before:
                tripped = True
            if start + self._batch_size < len(items):
                await self._sleep(self._batch_delay)

        logger.info(
            "Embedded %s: %d record(s), %d failure(s) from %d file(s)",
            resource_id,
            len(records),
            len(failures),
            report.total,
        )
        if failures:
            logger.warning("Failed to embed %d item(s) of %s", len(failures), resource_id)
        return EmbedResult(
            records=records,
            failures=failures,
            report=report,
            circuit_tripped=tripped,
        )

    async def embed_one(self, text: str) -> list[float]:
        """Vectorize a single text with retry and circuit-breaking.

        Raises the provider's final error, or :class:`ProviderCircuitOpenError`
        without calling the provider while the circuit is open or another
        item holds the half-open trial.
        """
        if self._breaker.current_state == pybreaker.STATE_CLOSED:
            return await self._guarded_embed(text, trial=False)
        if self._trial_lock.locked():
            msg = "Embedding provider circuit is open; trial call in progress"
            raise ProviderCircuitOpenError(msg)
        async with self._trial_lock:
            return await self._guarded_embed(text, trial=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _guarded_embed(self, text: str, *, trial: bool) -> list[float]:
        try:
            with self._breaker.calling():
                if trial:
                    await self._check_health()
                return await retry_async(
                    lambda: self._call_provider(text),
                    max_retries=self._max_retries,
                    base_delay=self._retry_base_delay,
                    max_delay=self._retry_max_delay,
                    jitter=self._retry_jitter,
                )
        except pybreaker.CircuitBreakerError as exc:
            msg = f"Embedding provider circuit is open: {exc}"
            raise ProviderCircuitOpenError(msg) from exc

    async def _check_health(self) -> None:
        """Fail the half-open trial without an embed call if the provider reports unhealthy."""
        if not isinstance(self._provider, SupportsHealthCheck):
            return
        try:
            healthy = await self._provider.health_check()
        except Exception:
            logger.warning("Provider health check raised", exc_info=True)
            healthy = False
        if not healthy:
            logger.info("Provider still unhealthy; keeping circuit open")
            msg = "Embedding provider circuit is open; health check failed"
            raise ProviderCircuitOpenError(msg)

    async def _embed_item(self, item: SourceFile, offset: int) -> list[float] | EmbedFailure:
        if offset and self._item_delay > 0:
            await self._sleep(offset * self._item_delay)
        try:
            return await self.embed_one(item.content)
        except ProviderCircuitOpenError as exc:
            logger.debug("Skipping %s: %s", item.path, exc)
            return EmbedFailure(path=item.path, reason=str(exc))
        except Exception as exc:
            logger.warning("Failed to embed %s after retries: %s", item.path, exc)
            return EmbedFailure(path=item.path, reason=str(exc) or type(exc).__name__)

    async def _call_provider(self, text: str) -> list[float]:
        vector = await self._provider.embed(text)
        if not vector:
            msg = "Provider returned an empty embedding"
            raise ProviderPermanentError(msg)
        return list(vector)
