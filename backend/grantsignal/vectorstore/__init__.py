from grantsignal.vectorstore.base import TenantMismatchError, VectorRecord, VectorStoreBase
from grantsignal.vectorstore.factory import get_vector_store

__all__ = ["VectorStoreBase", "VectorRecord", "TenantMismatchError", "get_vector_store"]
