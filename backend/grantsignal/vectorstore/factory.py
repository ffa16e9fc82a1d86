"""
Vector Store Factory

Vectorization is optional: without both a Pinecone API key and an index
name, get_vector_store() returns None and the pipeline's vectorization
stage reports "Pinecone not configured" instead of failing.
"""

from __future__ import annotations

from grantsignal.core.config import Settings
from grantsignal.vectorstore.base import VectorStoreBase


def get_vector_store(settings: Settings) -> VectorStoreBase | None:
    if not settings.pinecone_configured:
        return None

    from grantsignal.vectorstore.pinecone_store import PineconeVectorStore
    return PineconeVectorStore.from_settings(
        api_key=settings.pinecone_api_key,
        index_name=settings.pinecone_index_name,
        timeout_s=settings.vector_upsert_timeout,
    )
