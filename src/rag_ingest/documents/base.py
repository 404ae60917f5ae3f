"""Abstract document-status store.

The store belongs to the document metadata service; the ingestion worker
only reads documents and writes their processing fields.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from rag_ingest.documents.models import Document, DocumentStats, ProcessingStatus


class DocumentStatusStore(ABC):
    """Backend-agnostic access to document processing status."""

    @abstractmethod
    def add(self, document: Document) -> Document:
        """Register a new document (normally done by the upload service)."""
        ...

    @abstractmethod
    def get(self, document_id: str) -> Document | None:
        ...

    @abstractmethod
    def find_processable(self, limit: int | None = None) -> list[Document]:
        """Documents in ``pending`` or ``failed`` state (or with an abandoned claim), oldest first."""
        ...

    @abstractmethod
    def claim(self, document_id: str, owner: str | None = None) -> bool:
        """Atomically move ``pending|failed → processing`` on behalf of *owner*.

        A ``processing`` document can also be claimed when its claim has
        expired, or when *owner* already holds it (the queue redelivered the
        same job).  Returns ``False`` when the document is missing or claimed
        by someone else, so two workers never process it concurrently.
        """
        ...

    @abstractmethod
    def set_status(
        self,
        document_id: str,
        status: ProcessingStatus,
        *,
        chunks_count: int | None = None,
        vectorized_at: datetime | None = None,
    ) -> None:
        ...

    @abstractmethod
    def reset_for_retry(self, document_id: str) -> bool:
        """Move a ``failed`` (or abandoned ``processing``) document back to ``pending``.

        ``False`` when the document is in any other state.
        """
        ...

    @abstractmethod
    def stats(self) -> DocumentStats:
        """Document counts per status and the total number of chunks."""
        ...

    def open(self) -> None:
        """Prepare connections / schema.  No-op by default."""

    def close(self) -> None:
        """Release connections.  No-op by default."""
