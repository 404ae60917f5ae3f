"""FastAPI application exposing ingestion operations over REST.

Run with::

    uvicorn rag_ingest.serving.app:app

Tests build their own instance with :func:`create_app` and injected services.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from rag_ingest import __version__
from rag_ingest.documents.models import DocumentStats
from rag_ingest.errors import IndexNotFoundError, IngestionError, QueueError
from rag_ingest.index.client import sanitize_index_name
from rag_ingest.models import Origin
from rag_ingest.queue.job_queue import JobInfo, QueueStatus
from rag_ingest.queue.jobs import InlineContent
from rag_ingest.queue.producer import inline_job, retry_document
from rag_ingest.runtime import Services, build_services

logger = logging.getLogger(__name__)


# ── Request / Response schemas ────────────────────────────────────────
class IngestRequest(BaseModel):
    """Already-extracted content to index."""

    owner_id: str
    file_name: str
    content: str = Field(min_length=1)
    external_file_id: str | None = None
    mime_type: str | None = None
    origin: Origin = Origin.DRIVE
    source_id: str | None = None


class EnqueueResponse(BaseModel):
    job_id: str
    entry_id: str


class RetryResponse(BaseModel):
    message: str
    document_id: str
    entry_id: str


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=100)


class SearchHit(BaseModel):
    id: str
    score: float
    content: str
    metadata: dict[str, Any] = {}


class SearchResponse(BaseModel):
    results: list[SearchHit]


def get_services(request: Request) -> Services:
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]


def create_app(services: Services | None = None) -> FastAPI:
    """Build the API.  Without *services*, they are built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = build_services().open()
        try:
            yield
        finally:
            if owned:
                app.state.services.close()
                app.state.services = None

    app = FastAPI(
        title="RAG Ingest API",
        version=__version__,
        description="Queue documents for vectorization and inspect ingestion jobs.",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(QueueError)
    async def queue_unavailable(request: Request, exc: QueueError) -> JSONResponse:
        logger.error("Queue unavailable: %s", exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check."""
        return {"status": "ok"}

    @app.get("/queue/status", response_model=QueueStatus)
    def queue_status(services: ServicesDep) -> QueueStatus:
        return services.queue.status()

    @app.get("/jobs/{entry_id}", response_model=JobInfo)
    def get_job(entry_id: str, services: ServicesDep) -> JobInfo:
        info = services.queue.get_job(entry_id)
        if info is None:
            raise HTTPException(status_code=404, detail=f"Job not found: {entry_id}")
        return info

    @app.delete("/jobs/{entry_id}")
    def remove_job(entry_id: str, services: ServicesDep) -> dict[str, bool]:
        if not services.queue.remove_job(entry_id):
            raise HTTPException(status_code=404, detail=f"Job not found: {entry_id}")
        return {"removed": True}

    @app.post("/ingest", response_model=EnqueueResponse, status_code=202)
    def ingest(request: IngestRequest, services: ServicesDep) -> EnqueueResponse:
        """Queue inline content for chunking, embedding and indexing."""
        job = inline_job(InlineContent(**request.model_dump()))
        entry_id = services.queue.enqueue(job)
        return EnqueueResponse(job_id=job.job_id, entry_id=entry_id)

    @app.get("/documents/stats", response_model=DocumentStats)
    def document_stats(services: ServicesDep) -> DocumentStats:
        """Documents per processing status and the chunks indexed so far."""
        return services.store.stats()

    @app.post("/documents/{document_id}/retry", response_model=RetryResponse, status_code=202)
    def retry(document_id: str, services: ServicesDep) -> RetryResponse:
        """Re-queue a document whose processing failed."""
        try:
            entry_id = retry_document(services.store, services.queue, document_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return RetryResponse(
            message="Document queued for reprocessing",
            document_id=document_id,
            entry_id=entry_id,
        )

    @app.post("/search", response_model=SearchResponse)
    def search(request: SearchRequest, services: ServicesDep) -> SearchResponse:
        """Nearest-neighbour lookup over the ingestion index."""
        try:
            vector = services.batcher.embed_with_retry(request.query)
            index_name = sanitize_index_name(services.settings.index_name)
            hits = services.index_client.query(index_name, vector, top_k=request.top_k)
        except IndexNotFoundError:
            logger.info("Search before anything was indexed into %r", services.settings.index_name)
            return SearchResponse(results=[])
        except IngestionError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return SearchResponse(
            results=[
                SearchHit(id=hit.id, score=hit.score, content=hit.content, metadata=hit.metadata)
                for hit in hits
            ]
        )

    return app


app = create_app()
