"""
Pinecone Vector Store — Organization Namespace Isolation

Isolation model:
  One shared Pinecone index, one namespace per organization. The
  namespace IS the organization id (no prefix), matching what the web
  tier's semantic search queries against.

  - Upserts go to namespace=<organizationId> only
  - Record metadata carries organizationId as a secondary guard and is
    validated against the namespace before the request is made

Namespace creation is implicit: Pinecone creates it on first upsert.

The Pinecone data-plane client is synchronous, so calls run in the
default executor; the upsert is wrapped in asyncio.wait_for with the
configured timeout.
"""

from __future__ import annotations

import asyncio
import functools
import logging

from pinecone import Pinecone

from grantsignal.vectorstore.base import VectorRecord, VectorStoreBase

logger = logging.getLogger(__name__)

# Pinecone's 2 MB request limit: 3072-dim float vectors + chunk text stay
# well under it at 100 per request.
UPSERT_BATCH_SIZE = 100


class PineconeVectorStore(VectorStoreBase):
    """
    Usage:
        store = PineconeVectorStore(Pinecone(api_key=...).Index("grantsignal"))
        await store.upsert(organization_id, records)
    """

    def __init__(self, index, timeout_s: float = 60.0) -> None:
        self._index   = index
        self._timeout = timeout_s

    @classmethod
    def from_settings(cls, api_key: str, index_name: str, timeout_s: float = 60.0) -> "PineconeVectorStore":
        return cls(Pinecone(api_key=api_key).Index(index_name), timeout_s=timeout_s)

    async def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        """
        Upsert all records into `namespace`.
        Validates every record's organizationId before sending to Pinecone.
        """
        if not records:
            return 0

        self.validate(namespace, records)
        vectors = [rec.to_payload() for rec in records]

        loop = asyncio.get_running_loop()
        total = 0
        for i in range(0, len(vectors), UPSERT_BATCH_SIZE):
            batch = vectors[i : i + UPSERT_BATCH_SIZE]
            call = functools.partial(self._index.upsert, vectors=batch, namespace=namespace)
            await asyncio.wait_for(loop.run_in_executor(None, call), timeout=self._timeout)
            total += len(batch)

        logger.info("Pinecone upsert | namespace=%s vectors=%d", namespace, total)
        return total
