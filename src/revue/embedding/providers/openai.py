"""OpenAIEmbedding: async provider for OpenAI-compatible embedding endpoints."""

from __future__ import annotations

import logging
import os
from typing import Any

import openai
from openai import AsyncOpenAI

from revue.exceptions import ProviderPermanentError, ProviderTransientError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "qodo-embed-1"
DEFAULT_BASE_URL = "http://localhost:8000/v1"

# Output width of models whose size is fixed by the server.
_KNOWN_DIMENSIONS = {
    "qodo-embed-1": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

# Status codes worth retrying when the SDK raises a bare APIStatusError.
_TRANSIENT_STATUS = frozenset({408, 409, 425, 429})


class OpenAIEmbedding:
    """Async provider speaking the OpenAI ``/embeddings`` protocol.

    Works against api.openai.com or any compatible self-hosted service
    (for example a local ``qodo-embed-1`` server) via *base_url*.  The SDK's
    own retries are disabled: retry and circuit-breaking belong to the
    embedding pipeline, which needs every failure classified as
    :class:`ProviderTransientError` or :class:`ProviderPermanentError`.
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str | None = DEFAULT_BASE_URL,
        dimensions: int | None = None,
        api_key: str | None = None,
        timeout: float = 60.0,
        batch_size: int = 64,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._dimensions = dimensions
        self._batch_size = batch_size
        if client is not None:
            self._client = client
        else:
            # Self-hosted servers usually ignore the key but the SDK requires one
            resolved_key = api_key or os.environ.get("OPENAI_API_KEY") or "not-needed"
            self._client = AsyncOpenAI(
                api_key=resolved_key,
                base_url=base_url,
                max_retries=0,
                timeout=timeout,
            )

    # ------------------------------------------------------------------
    # EmbeddingProvider protocol
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed one chunk of source text."""
        (vector,) = await self._request([text])
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in order, at most *batch_size* inputs per request."""
        size = self._batch_size
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), size):
            vectors += await self._request(texts[offset : offset + size])
        return vectors

    @property
    def dimensions(self) -> int:
        """Vector width stored for every chunk."""
        known = self._dimensions or _KNOWN_DIMENSIONS.get(self._model)
        if known is None:
            msg = f"Unknown default dimensions for {self._model!r}; configure embedding_dimensions"
            raise ValueError(msg)
        return known

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._model

    async def health_check(self) -> bool:
        """Return True if the endpoint answers a minimal embedding request."""
        try:
            await self._request(["ping"])
        except (ProviderTransientError, ProviderPermanentError) as exc:
            logger.debug("Embedding health check failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Release the SDK client's connection pool."""
        await self._client.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _request(self, texts: list[str]) -> list[list[float]]:
        """POST one /embeddings request and return vectors in input order."""
        extra: dict[str, Any] = {}
        if self._dimensions is not None:
            extra["dimensions"] = self._dimensions

        try:
            response = await self._client.embeddings.create(model=self._model, input=texts, **extra)
        except openai.APIError as exc:
            raise _classify(exc) from exc

        if not response.data or len(response.data) != len(texts):
            msg = (
                f"Embedding response for {len(texts)} input(s) "
                f"contained {len(response.data or [])} vector(s)"
            )
            raise ProviderPermanentError(msg)

        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


def _classify(exc: openai.APIError) -> ProviderTransientError | ProviderPermanentError:
    """Map an OpenAI SDK error onto the provider error taxonomy."""
    msg = f"{type(exc).__name__}: {exc}"
    # APITimeoutError is a subclass of APIConnectionError
    if isinstance(exc, (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)):
        return ProviderTransientError(msg)
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500 or exc.status_code in _TRANSIENT_STATUS:
            return ProviderTransientError(msg)
        return ProviderPermanentError(msg)
    return ProviderPermanentError(msg)
