"""Ingestion worker — drives one job from payload to indexed vectors.

Per content body the worker walks::

    received → extracting → chunking → embedding → upserting → done
                                                    ↘ failed (from any stage)

Stages are logged, never persisted.  The only durable signal is the
document's ``processing_status`` in the status store.

Failure policy
--------------
* **File references** are best effort per document: a document that fails
  at any stage is marked ``failed`` and the worker moves on, so one broken
  document never drags its healthy siblings into a job-level retry.  The
  job itself succeeds once every document has been attempted.
* **Inline content** has no document record; any exception propagates so
  the queue's retry/backoff takes over.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel

from rag_ingest.documents.base import DocumentStatusStore
from rag_ingest.documents.models import Document, ProcessingStatus
from rag_ingest.errors import ExtractionError
from rag_ingest.index.client import DEFAULT_DIMENSION, VectorIndexClient
from rag_ingest.ingestion.chunker import ChunkingOptions, chunk_text, merge_overlapping_chunks
from rag_ingest.ingestion.embedder import EmbeddingBatcher
from rag_ingest.ingestion.loader import ContentExtractor
from rag_ingest.models import Origin
from rag_ingest.queue.jobs import FileReference, IngestionJob, InlineContent

logger = logging.getLogger(__name__)

_SOURCE_PREFIXES = {Origin.DRIVE: "gdrive", Origin.LOCAL: "local"}


class PipelineStage(str, Enum):
    RECEIVED = "received"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    UPSERTING = "upserting"
    DONE = "done"
    FAILED = "failed"


class JobReport(BaseModel):
    """Summary returned by :meth:`IngestionWorker.process` (stored as the job result)."""

    job_id: str
    mode: str
    documents_seen: int = 0
    documents_completed: int = 0
    documents_failed: int = 0
    documents_skipped: int = 0
    chunks_created: int = 0
    vectors_upserted: int = 0
    source_id: str | None = None


class _Progress:
    """Current stage of one content body, for logging."""

    def __init__(self, subject: str) -> None:
        self.subject = subject
        self.stage = PipelineStage.RECEIVED

    def advance(self, stage: PipelineStage) -> None:
        logger.debug("[%s] %s → %s", self.subject, self.stage.value, stage.value)
        self.stage = stage


class IngestionWorker:
    """Process :class:`IngestionJob` objects one at a time.

    Parameters
    ----------
    store:
        Document-status store.
    extractor:
        Turns ``(source_url, mime_type)`` into text.
    batcher:
        Embeds chunks into vector records.
    index_client:
        Vector-index client.
    index_name:
        Target index; created on first use.
    index_dimension:
        Vector dimension used when the index has to be created.
    chunking:
        Chunk size / overlap / separator.
    merge_overlaps:
        Run :func:`merge_overlapping_chunks` after chunking.
    clock:
        Returns "now"; injected for tests.
    """

    def __init__(
        self,
        *,
        store: DocumentStatusStore,
        extractor: ContentExtractor,
        batcher: EmbeddingBatcher,
        index_client: VectorIndexClient,
        index_name: str = "documind",
        index_dimension: int = DEFAULT_DIMENSION,
        chunking: ChunkingOptions | None = None,
        merge_overlaps: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._batcher = batcher
        self._index = index_client
        self.index_name = index_name
        self.index_dimension = index_dimension
        self.chunking = chunking or ChunkingOptions()
        self.merge_overlaps = merge_overlaps
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -- public API -----------------------------------------------------------

    def process_wire(self, raw: Mapping[str, Any]) -> JobReport:
        """Decode a wire payload once and process it."""
        return self.process(IngestionJob.from_wire(raw))

    def process(self, job: IngestionJob) -> JobReport:
        logger.info("Starting ingestion job %s (retry %d)", job.job_id, job.retry_count)
        payload = job.payload
        if isinstance(payload, InlineContent):
            report = self._process_inline(job, payload)
        elif isinstance(payload, FileReference):
            report = self._process_file_reference(job, payload)
        else:
            raise TypeError(f"Unhandled payload type: {type(payload).__name__}")

        logger.info(
            "Job %s completed: %d documents processed, %d failed, %d chunks created, %d vectors upserted",
            job.job_id,
            report.documents_completed,
            report.documents_failed,
            report.chunks_created,
            report.vectors_upserted,
        )
        return report

    # -- inline content -------------------------------------------------------

    def _process_inline(self, job: IngestionJob, payload: InlineContent) -> JobReport:
        source_id = payload.source_id or self._synthetic_source_id(payload)
        report = JobReport(job_id=job.job_id, mode="inline", documents_seen=1, source_id=source_id)
        progress = _Progress(source_id)

        try:
            chunks, vectors = self._index_text(
                payload.content,
                source_id=source_id,
                source_name=payload.file_name,
                origin=payload.origin,
                owner_id=payload.owner_id,
                progress=progress,
            )
        except Exception:
            logger.exception("Inline ingestion of %s failed at stage %s", payload.file_name, progress.stage.value)
            progress.advance(PipelineStage.FAILED)
            raise

        report.chunks_created = chunks
        report.vectors_upserted = vectors
        if vectors:
            report.documents_completed = 1
        else:
            logger.warning("No usable content in %s; nothing indexed", payload.file_name)
            report.documents_failed = 1
        return report

    @staticmethod
    def _synthetic_source_id(payload: InlineContent) -> str:
        prefix = _SOURCE_PREFIXES[payload.origin]
        name = payload.external_file_id or payload.file_name
        return f"{prefix}-{payload.owner_id}-{name}-{payload.submitted_at}"

    # -- file references ------------------------------------------------------

    def _process_file_reference(self, job: IngestionJob, ref: FileReference) -> JobReport:
        if ref.is_batch:
            report = JobReport(job_id=job.job_id, mode="batch")
            documents = self._store.find_processable()
        else:
            report = JobReport(job_id=job.job_id, mode="document")
            document = self._store.get(ref.document_id)
            if document is None:
                logger.warning("Document %s not found; nothing to process", ref.document_id)
                report.documents_skipped = 1
                return report
            overrides = {
                key: value
                for key, value in (("source_url", ref.source_url), ("mime_type", ref.mime_type))
                if value is not None
            }
            documents = [document.model_copy(update=overrides)]

        if not documents:
            logger.warning("No documents found to process")
            return report

        logger.info("Found %d document(s) to process", len(documents))
        for document in documents:
            report.documents_seen += 1
            status, chunks, vectors = self._process_document(document, owner=job.job_id)
            if status is ProcessingStatus.COMPLETED:
                report.documents_completed += 1
                report.chunks_created += chunks
                report.vectors_upserted += vectors
            elif status is ProcessingStatus.FAILED:
                report.documents_failed += 1
            else:
                report.documents_skipped += 1
        return report

    def _process_document(self, document: Document, *, owner: str) -> tuple[ProcessingStatus | None, int, int]:
        """Run one document end to end.  Never raises for pipeline errors.

        The claim is taken on behalf of *owner* (the job id), so a redelivery
        of a job that died mid-document can pick the document up again.
        """
        if not self._store.claim(document.id, owner=owner):
            logger.info("Document %s is already being processed elsewhere; skipping", document.id)
            return None, 0, 0

        progress = _Progress(document.id)
        logger.info("Processing document: %s", document.name)
        try:
            if not document.source_url or not document.mime_type:
                raise ExtractionError(f"Document {document.name} is missing its URL or type")

            progress.advance(PipelineStage.EXTRACTING)
            text = self._extractor.extract(document.source_url, document.mime_type)
            if not text or not text.strip():
                logger.warning("No content extracted from document: %s", document.name)
                return self._mark_failed(document, progress)
            logger.info("Extracted %d characters from %s", len(text), document.name)

            chunks, vectors = self._index_text(
                text,
                source_id=document.id,
                source_name=document.name,
                origin=Origin.LOCAL,
                owner_id=document.owner_id,
                progress=progress,
            )
            if not vectors:
                return self._mark_failed(document, progress)

            self._store.set_status(
                document.id,
                ProcessingStatus.COMPLETED,
                chunks_count=chunks,
                vectorized_at=self._clock(),
            )
        except Exception:
            logger.exception(
                "Failed to process document %s (%s) at stage %s",
                document.name,
                document.source_url,
                progress.stage.value,
            )
            return self._mark_failed(document, progress)

        logger.info("Successfully processed document: %s (%d chunks)", document.name, chunks)
        return ProcessingStatus.COMPLETED, chunks, vectors

    def _mark_failed(self, document: Document, progress: _Progress) -> tuple[ProcessingStatus, int, int]:
        progress.advance(PipelineStage.FAILED)
        self._store.set_status(document.id, ProcessingStatus.FAILED)
        return ProcessingStatus.FAILED, 0, 0

    # -- shared stages --------------------------------------------------------

    def _index_text(
        self,
        text: str,
        *,
        source_id: str,
        source_name: str,
        origin: Origin,
        owner_id: str | None,
        progress: _Progress,
    ) -> tuple[int, int]:
        """Chunk, embed and upsert *text*; return ``(chunks, vectors upserted)``."""
        progress.advance(PipelineStage.CHUNKING)
        chunks = chunk_text(text, source_id, source_name, self.chunking)
        if self.merge_overlaps:
            chunks = merge_overlapping_chunks(chunks)
        logger.info("Created %d chunks from %s", len(chunks), source_name)
        if not chunks:
            return 0, 0

        progress.advance(PipelineStage.EMBEDDING)
        records = self._batcher.chunks_to_records(chunks, origin=origin, owner_id=owner_id)
        if not records:
            logger.warning("No records created for %s", source_name)
            return len(chunks), 0

        progress.advance(PipelineStage.UPSERTING)
        index_name = self._index.ensure_index(self.index_name, self.index_dimension)
        upserted = self._index.upsert(index_name, records)

        progress.advance(PipelineStage.DONE)
        return len(chunks), upserted
