"""Document lifecycle records as seen by the ingestion worker."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class ProcessingStatus(str, Enum):
    """Coarse processing state of a document.

    ``pending|failed → processing → completed|failed``; an administrative
    retry moves ``failed → pending``.  A ``processing`` claim is a lease, so
    a document abandoned by a dead worker becomes claimable again.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


PROCESSABLE_STATUSES = (ProcessingStatus.PENDING, ProcessingStatus.FAILED)


class Document(BaseModel):
    """A registered source document."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    source_url: str | None = None
    mime_type: str | None = None
    owner_id: str | None = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    chunks_count: int = 0
    claimed_by: str | None = None
    vectorized_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DocumentStats(BaseModel):
    """Document counts per processing status, plus the chunks indexed so far."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
    total_chunks: int = 0

    @classmethod
    def from_counts(cls, counts: dict[str, int], *, total_chunks: int = 0) -> DocumentStats:
        by_status = {ProcessingStatus(status).value: int(n) for status, n in counts.items()}
        return cls(**by_status, total=sum(by_status.values()), total_chunks=total_chunks)
