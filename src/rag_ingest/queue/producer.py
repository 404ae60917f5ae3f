"""Producer helpers — build ingestion jobs and put them on the queue."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pydantic import BaseModel

from rag_ingest.documents.base import DocumentStatusStore
from rag_ingest.errors import IngestionError
from rag_ingest.models import Origin
from rag_ingest.queue.job_queue import IngestionJobQueue
from rag_ingest.queue.jobs import FileReference, IngestionJob, InlineContent, epoch_millis

logger = logging.getLogger(__name__)


class EnqueueResult(BaseModel):
    """Outcome of enqueuing one item from :func:`enqueue_many`."""

    file_name: str
    success: bool
    job_id: str | None = None
    entry_id: str | None = None
    error: str | None = None


def enqueue_upload(
    queue: IngestionJobQueue,
    document_id: str,
    *,
    source_url: str | None = None,
    mime_type: str | None = None,
) -> str:
    """Queue a freshly uploaded (registered) document for processing."""
    job = IngestionJob(
        job_id=document_id,
        payload=FileReference(document_id=document_id, source_url=source_url, mime_type=mime_type),
    )
    return queue.enqueue(job)


def enqueue_batch(queue: IngestionJobQueue, job_id: str | None = None) -> str:
    """Queue a batch run over every pending / failed document.

    The default id ``batch-{epoch millis}`` is unique per run; it also owns
    the document claims the run takes.
    """
    job_id = job_id or f"batch-{epoch_millis()}"
    return queue.enqueue(IngestionJob(job_id=job_id, payload=FileReference()))


def inline_job(content: InlineContent) -> IngestionJob:
    """Wrap *content* in a job whose id is ``{owner}-{file name}-{submitted_at}``."""
    job_id = f"{content.owner_id}-{content.file_name}-{content.submitted_at}"
    return IngestionJob(job_id=job_id, payload=content)


def enqueue_inline_content(
    queue: IngestionJobQueue,
    *,
    owner_id: str,
    file_name: str,
    content: str,
    external_file_id: str | None = None,
    mime_type: str | None = None,
    origin: Origin = Origin.DRIVE,
    source_id: str | None = None,
) -> str:
    """Queue already-extracted content (e.g. from a Drive sync)."""
    logger.info("Ingesting %s for %s, %d chars", file_name, owner_id, len(content))
    job = inline_job(
        InlineContent(
            owner_id=owner_id,
            file_name=file_name,
            content=content,
            external_file_id=external_file_id,
            mime_type=mime_type,
            origin=origin,
            source_id=source_id,
        )
    )
    return queue.enqueue(job)


def enqueue_many(queue: IngestionJobQueue, items: Iterable[InlineContent]) -> list[EnqueueResult]:
    """Queue several inline documents; one failure does not stop the rest."""
    results: list[EnqueueResult] = []
    for item in items:
        job = inline_job(item)
        try:
            entry_id = queue.enqueue(job)
        except IngestionError as exc:
            logger.error("Failed to ingest %s: %s", item.file_name, exc)
            results.append(EnqueueResult(file_name=item.file_name, success=False, error=str(exc)))
            continue
        results.append(
            EnqueueResult(file_name=item.file_name, success=True, job_id=job.job_id, entry_id=entry_id)
        )
    return results


def retry_document(store: DocumentStatusStore, queue: IngestionJobQueue, document_id: str) -> str:
    """Reset a ``failed`` (or abandoned ``processing``) document to ``pending`` and queue it again.

    Raises
    ------
    LookupError
        The document does not exist.
    ValueError
        The document is neither failed nor abandoned.
    """
    if store.get(document_id) is None:
        raise LookupError(f"Document not found: {document_id}")
    if not store.reset_for_retry(document_id):
        raise ValueError("Only failed or abandoned documents can be retried")
    logger.info("Document %s reset to pending for reprocessing", document_id)
    return enqueue_upload(queue, document_id)
