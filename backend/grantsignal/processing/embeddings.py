"""
Embedder  —  Batched OpenAI Embeddings with Retry
══════════════════════════════════════════════════

  • One API call per EMBEDDING_BATCH_SIZE texts (100).
  • Output order always matches input order: vector i belongs to text i.
  • Any batch that still fails after retries fails the whole call. The
    vectorization stage is all-or-nothing; a partial set of vectors would
    leave `chunkCount` lying about what is searchable.

Model:
  text-embedding-3-large → 3072 dims (must match the Pinecone index)

Retry policy:
  RateLimitError, APITimeoutError,
  APIConnectionError, InternalServerError  → RETRY_BASE_DELAY × 2^attempt
  anything else (auth, bad request)        → raise immediately
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Protocol, Sequence

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

EMBEDDING_BATCH_SIZE = 100
MAX_RETRIES          = 3
RETRY_BASE_DELAY     = 2.0
RETRY_MAX_DELAY      = 30.0

_RETRYABLE = (RateLimitError, APITimeoutError, APIConnectionError, InternalServerError)


class Embedder(Protocol):
    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


class OpenAIEmbedder:
    """
    Usage:
        embedder = OpenAIEmbedder(AsyncOpenAI(api_key=...), model="text-embedding-3-large")
        vectors  = await embedder.embed([c.text for c in chunks])
    """

    def __init__(
        self,
        client:     AsyncOpenAI,
        model:      str = "text-embedding-3-large",
        batch_size: int = EMBEDDING_BATCH_SIZE,
    ) -> None:
        self._client     = client
        self._model      = model
        self._batch_size = batch_size

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []

        t0 = time.monotonic()
        vectors: list[list[float]] = []
        total_tokens = 0

        for start in range(0, len(texts), self._batch_size):
            batch = list(texts[start : start + self._batch_size])
            batch_vectors, tokens = await self._embed_batch_with_retry(batch, start // self._batch_size)
            vectors.extend(batch_vectors)
            total_tokens += tokens

        logger.info(
            "Embedded | model=%s texts=%d tokens=%d elapsed_ms=%.0f",
            self._model, len(texts), total_tokens, (time.monotonic() - t0) * 1000,
        )
        return vectors

    async def _embed_batch_with_retry(
        self,
        batch:     list[str],
        batch_idx: int,
    ) -> tuple[list[list[float]], int]:
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES + 1):
            if attempt > 0:
                delay = min(RETRY_BASE_DELAY * (2 ** (attempt - 1)), RETRY_MAX_DELAY)
                logger.warning(
                    "Embedding retry | batch=%d attempt=%d delay=%.1fs error=%s",
                    batch_idx, attempt, delay, last_error,
                )
                await asyncio.sleep(delay)

            try:
                return await self._call_openai(batch)
            except _RETRYABLE as exc:
                last_error = exc

        assert last_error is not None
        raise last_error

    async def _call_openai(self, batch: list[str]) -> tuple[list[list[float]], int]:
        response = await self._client.embeddings.create(model=self._model, input=batch)

        # the API returns items with an explicit index; never trust list order
        ordered = sorted(response.data, key=lambda item: item.index)
        if len(ordered) != len(batch):
            raise ValueError(
                f"Embedding count mismatch: sent {len(batch)}, got {len(ordered)}"
            )

        tokens = response.usage.total_tokens if response.usage else 0
        return [item.embedding for item in ordered], tokens
