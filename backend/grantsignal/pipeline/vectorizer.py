"""
Stage 4 — chunk, embed and upsert into the organization's namespace.

Best-effort: returns Skipped instead of raising.

    vector store not configured   → Skipped("Pinecone not configured")
    text shorter than 100 chars   → Skipped("Text too short")
    chunker yields nothing        → Skipped("No chunks generated")
    any exception                 → Skipped("Vectorization error", error)

On success the vector ids, `vectorized: true` and `chunkCount` are merged
into the document's stored metadata.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from grantsignal.db.repositories import DocumentRepository
from grantsignal.pipeline.results import Completed, Skipped, StageOutcome
from grantsignal.processing.chunking import Chunk, chunk_text
from grantsignal.processing.embeddings import Embedder
from grantsignal.vectorstore.base import VectorRecord, VectorStoreBase

logger = logging.getLogger(__name__)

MIN_VECTORIZE_CHARS = 100


def vector_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}-{chunk_index}"


class Vectorizer:

    def __init__(
        self,
        repo:            DocumentRepository,
        embedder:        Embedder | None,
        vector_store:    VectorStoreBase | None,
        chunker:         Callable[[str], list[Chunk]] = chunk_text,
        embed_timeout_s: float = 120.0,
    ) -> None:
        self._repo     = repo
        self._embedder = embedder
        self._store    = vector_store
        self._chunker  = chunker
        self._embed_timeout = embed_timeout_s

    async def run(
        self,
        document_id:     str,
        organization_id: str,
        document_name:   str,
        document_type:   str,
        text:            str,
    ) -> StageOutcome:
        if self._store is None or self._embedder is None:
            logger.info("Vectorization skipped, Pinecone not configured | doc=%s", document_id)
            return Skipped("Pinecone not configured")

        if len(text) < MIN_VECTORIZE_CHARS:
            logger.info("Vectorization skipped, text too short | doc=%s chars=%d", document_id, len(text))
            return Skipped("Text too short")

        try:
            chunks = self._chunker(text)
            if not chunks:
                return Skipped("No chunks generated")

            vectors = await asyncio.wait_for(
                self._embedder.embed([c.text for c in chunks]),
                timeout=self._embed_timeout,
            )
            if len(vectors) != len(chunks):
                raise ValueError(
                    f"Embedding count mismatch: {len(chunks)} chunks, {len(vectors)} vectors"
                )

            records = [
                VectorRecord(
                    id=vector_id(document_id, chunk.index),
                    values=values,
                    metadata={
                        "organizationId": organization_id,
                        "documentId":     document_id,
                        "documentName":   document_name,
                        "documentType":   document_type,
                        "chunkIndex":     chunk.index,
                        "text":           chunk.text,
                    },
                )
                for chunk, values in zip(chunks, vectors)
            ]

            # namespace == organization id; the store re-checks every record
            upserted = await self._store.upsert(organization_id, records)

            await self._repo.merge_metadata(
                document_id,
                organization_id,
                {
                    "pineconeIds": [r.id for r in records],
                    "vectorized":  True,
                    "chunkCount":  len(chunks),
                },
            )
        except Exception as exc:
            logger.exception("Vectorization failed | doc=%s org=%s", document_id, organization_id)
            return Skipped("Vectorization error", error=str(exc) or type(exc).__name__)

        logger.info(
            "Vectorized | doc=%s org=%s chunks=%d vectors=%d",
            document_id, organization_id, len(chunks), upserted,
        )
        return Completed({"chunkCount": len(chunks), "vectorCount": upserted})
