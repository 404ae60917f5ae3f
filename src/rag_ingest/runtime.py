"""Wire the ingestion components together from :class:`~rag_ingest.config.Settings`.

Usage::

    from rag_ingest.runtime import build_services

    with build_services() as services:
        services.queue.enqueue(job)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from rag_ingest.config import Settings, settings as default_settings
from rag_ingest.documents.base import DocumentStatusStore
from rag_ingest.index.client import VectorIndexClient
from rag_ingest.ingestion.chunker import ChunkingOptions
from rag_ingest.ingestion.embedder import EmbeddingBatcher, EmbeddingOptions, get_embeddings
from rag_ingest.ingestion.loader import ContentExtractor
from rag_ingest.queue.job_queue import IngestionJobQueue
from rag_ingest.worker.pipeline import IngestionWorker

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Root logging setup shared by the worker, the CLI and the API."""
    logging.basicConfig(
        level=(level or default_settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass
class Services:
    """Every long-lived collaborator a process needs."""

    settings: Settings
    store: DocumentStatusStore
    queue: IngestionJobQueue
    extractor: ContentExtractor
    batcher: EmbeddingBatcher
    index_client: VectorIndexClient
    worker: IngestionWorker

    def open(self) -> Services:
        self.store.open()
        self.queue.open()
        return self

    def close(self) -> None:
        self.queue.close()
        self.store.close()
        self.extractor.close()
        self.index_client.close()

    def __enter__(self) -> Services:
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()


def build_queue(cfg: Settings) -> IngestionJobQueue:
    return IngestionJobQueue(
        cfg.queue_name,
        redis_url=cfg.redis_url,
        attempts=cfg.job_attempts,
        backoff_seconds=cfg.job_backoff_seconds,
        priority=cfg.job_priority,
        keep_completed=cfg.keep_completed_jobs,
        keep_failed=cfg.keep_failed_jobs,
        job_timeout=cfg.job_timeout_seconds,
    )


def build_store(cfg: Settings) -> DocumentStatusStore:
    """The SQLAlchemy document-status store, not yet opened."""
    from rag_ingest.documents.sql_store import SQLAlchemyDocumentStatusStore

    return SQLAlchemyDocumentStatusStore(cfg.database_url, claim_ttl=timedelta(seconds=cfg.claim_ttl_seconds))


def build_services(cfg: Settings | None = None) -> Services:
    """Construct (but do not open) the full service graph.

    Heavy backends (Chroma, SQLAlchemy) are imported here rather than at
    module level so that importing :mod:`rag_ingest.runtime` stays cheap.
    """
    cfg = cfg or default_settings

    from rag_ingest.index.chroma_store import ChromaIndexBackend

    store = build_store(cfg)
    extractor = ContentExtractor(timeout=cfg.extraction_timeout, max_retries=cfg.extraction_max_retries)
    embedding_options = EmbeddingOptions(
        model=cfg.embedding_model,
        batch_size=cfg.embedding_batch_size,
        max_retries=cfg.embedding_max_retries,
        retry_delay=cfg.embedding_retry_delay,
        batch_pause=cfg.embedding_batch_pause,
        expected_dimension=cfg.embedding_dim,
    )
    batcher = EmbeddingBatcher(get_embeddings(cfg, model=embedding_options.model), embedding_options)
    index_client = VectorIndexClient(
        ChromaIndexBackend(host=cfg.chroma_host, port=cfg.chroma_port, path=cfg.chroma_path),
        batch_size=cfg.upsert_batch_size,
        batch_pause=cfg.upsert_batch_pause,
        metric=cfg.index_metric,
    )
    worker = IngestionWorker(
        store=store,
        extractor=extractor,
        batcher=batcher,
        index_client=index_client,
        index_name=cfg.index_name,
        index_dimension=cfg.embedding_dim,
        chunking=ChunkingOptions(
            max_chunk_size=cfg.chunk_max_size,
            overlap_size=cfg.chunk_overlap,
            separator=cfg.chunk_separator,
        ),
        merge_overlaps=cfg.chunk_merge_overlaps,
    )
    logger.debug("Services built for queue %r and index %r", cfg.queue_name, cfg.index_name)
    return Services(
        settings=cfg,
        store=store,
        queue=build_queue(cfg),
        extractor=extractor,
        batcher=batcher,
        index_client=index_client,
        worker=worker,
    )
