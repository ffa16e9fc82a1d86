"""
Vector Store — Abstract Base

Tenant isolation contract (enforced by ALL implementations):
  - Every upsert goes to namespace == organization id.
  - A record whose metadata["organizationId"] differs from the target
    namespace is rejected before anything is sent to the backend.
  - There is no cross-namespace operation on this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class VectorRecord:
    """A single embedding record to upsert into the vector store."""
    id:        str              # "{documentId}-{chunkIndex}"
    values:    list[float]
    metadata:  dict
    # Required fields inside metadata:
    # - organizationId: str     (must equal the namespace)
    # - documentId: str
    # - documentName: str
    # - documentType: str
    # - chunkIndex: int
    # - text: str               (raw chunk text, returned with search hits)

    def to_payload(self) -> dict:
        return {"id": self.id, "values": self.values, "metadata": self.metadata}


class TenantMismatchError(ValueError):
    """Record metadata names a different organization than the target namespace."""


class VectorStoreBase(ABC):

    @staticmethod
    def validate(namespace: str, records: list[VectorRecord]) -> None:
        for rec in records:
            org = rec.metadata.get("organizationId")
            if org != namespace:
                raise TenantMismatchError(
                    f"Record {rec.id} organizationId mismatch: expected {namespace}, got {org}"
                )

    @abstractmethod
    async def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        """
        Insert or update records in `namespace`.
        Returns the number of vectors upserted.
        """
