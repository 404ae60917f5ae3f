"""Abstract base class for vector-index backends.

Adding a new backend (Pinecone, Qdrant, Weaviate …) only requires
subclassing :class:`VectorIndexBackend` and implementing the abstract
methods.  Batching, pacing, name sanitising and dimension checks live in
:class:`~rag_ingest.index.client.VectorIndexClient` and are shared by
every backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from rag_ingest.models import ScoredRecord, VectorRecord


class VectorIndexBackend(ABC):
    """Backend-agnostic vector-index interface."""

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def list_indexes(self) -> list[str]:
        """Return the names of all existing indexes."""
        ...

    @abstractmethod
    def create_index(self, name: str, *, dimension: int, metric: str = "cosine") -> None:
        """Create an empty index.  Called only when *name* does not exist."""
        ...

    @abstractmethod
    def describe_index(self, name: str) -> int | None:
        """Return the vector dimension of *name*, or ``None`` when unknown."""
        ...

    @abstractmethod
    def upsert(self, name: str, records: list[VectorRecord]) -> None:
        """Insert or overwrite *records* by id (last write wins)."""
        ...

    @abstractmethod
    def query(self, name: str, vector: list[float], *, top_k: int = 5) -> list[ScoredRecord]:
        """Return the *top_k* nearest records, most similar first, with metadata."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    def close(self) -> None:
        """Release client resources.  No-op by default."""
