"""Shared pytest configuration and fixtures.

In-memory fakes stand in for every external service (embedding provider,
vector index, document database, content source), so no test needs a
network, Redis, Chroma or an API key.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest
from langchain_core.embeddings import Embeddings

from rag_ingest.documents.base import DocumentStatusStore
from rag_ingest.documents.models import PROCESSABLE_STATUSES, Document, DocumentStats, ProcessingStatus
from rag_ingest.index.base import VectorIndexBackend
from rag_ingest.index.client import VectorIndexClient
from rag_ingest.ingestion.embedder import EmbeddingBatcher, EmbeddingOptions
from rag_ingest.models import ScoredRecord, VectorRecord

DIM = 8


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────


class FakeEmbeddings(Embeddings):
    """Deterministic embeddings: a short vector derived from the text length.

    ``fail_times`` makes the next N calls raise, to exercise retries.
    """

    def __init__(self, dimension: int = DIM, fail_times: int = 0) -> None:
        self.dimension = dimension
        self.fail_times = fail_times
        self.document_calls: list[list[str]] = []
        self.query_calls: list[str] = []

    def _vector(self, text: str) -> list[float]:
        return [float(len(text) % 97 + 1)] + [0.5] * (self.dimension - 1)

    def _maybe_fail(self) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("embedding provider unavailable")

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls.append(list(texts))
        self._maybe_fail()
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        self._maybe_fail()
        return self._vector(text)


class InMemoryIndexBackend(VectorIndexBackend):
    """Dict-backed index; last write wins per id."""

    def __init__(self) -> None:
        self.indexes: dict[str, dict[str, VectorRecord]] = {}
        self.dimensions: dict[str, int] = {}
        self.upsert_calls: list[tuple[str, int]] = []
        self.create_calls: list[str] = []
        self.fail_on_upsert_call: int | None = None

    def list_indexes(self) -> list[str]:
        return list(self.indexes)

    def create_index(self, name: str, *, dimension: int, metric: str = "cosine") -> None:
        self.create_calls.append(name)
        self.indexes[name] = {}
        self.dimensions[name] = dimension

    def describe_index(self, name: str) -> int | None:
        return self.dimensions.get(name)

    def upsert(self, name: str, records: list[VectorRecord]) -> None:
        self.upsert_calls.append((name, len(records)))
        if self.fail_on_upsert_call == len(self.upsert_calls):
            raise ConnectionError("index unavailable")
        for record in records:
            self.indexes.setdefault(name, {})[record.id] = record

    def query(self, name: str, vector: list[float], *, top_k: int = 5) -> list[ScoredRecord]:
        records = list(self.indexes.get(name, {}).values())[:top_k]
        return [
            ScoredRecord(id=r.id, score=1.0 - i * 0.1, metadata=r.metadata.to_flat_dict())
            for i, r in enumerate(records)
        ]

    def health_check(self) -> bool:
        return True


class InMemoryDocumentStore(DocumentStatusStore):
    """Dict-backed document-status store with the same claim lease as the SQL store."""

    def __init__(
        self, documents: list[Document] | None = None, *, claim_ttl: timedelta = timedelta(minutes=30)
    ) -> None:
        self.documents: dict[str, Document] = {}
        self.status_history: list[tuple[str, ProcessingStatus]] = []
        self.claim_ttl = claim_ttl
        for doc in documents or []:
            self.add(doc)

    def add(self, document: Document) -> Document:
        now = datetime.now(timezone.utc)
        stored = document.model_copy(
            update={"created_at": document.created_at or now, "updated_at": document.updated_at or now}
        )
        self.documents[stored.id] = stored
        return stored

    def get(self, document_id: str) -> Document | None:
        return self.documents.get(document_id)

    def find_processable(self, limit: int | None = None) -> list[Document]:
        found = [
            d for d in self.documents.values() if d.processing_status in PROCESSABLE_STATUSES or self._abandoned(d)
        ]
        return found[:limit] if limit is not None else found

    def claim(self, document_id: str, owner: str | None = None) -> bool:
        doc = self.documents.get(document_id)
        if doc is None:
            return False
        held_by_owner = (
            owner is not None and doc.processing_status is ProcessingStatus.PROCESSING and doc.claimed_by == owner
        )
        if not (doc.processing_status in PROCESSABLE_STATUSES or self._abandoned(doc) or held_by_owner):
            return False
        self.set_status(document_id, ProcessingStatus.PROCESSING)
        self.documents[document_id] = self.documents[document_id].model_copy(update={"claimed_by": owner})
        return True

    def set_status(self, document_id, status, *, chunks_count=None, vectorized_at=None) -> None:
        update: dict = {"processing_status": status, "updated_at": datetime.now(timezone.utc)}
        if status is not ProcessingStatus.PROCESSING:
            update["claimed_by"] = None
        if chunks_count is not None:
            update["chunks_count"] = chunks_count
        if vectorized_at is not None:
            update["vectorized_at"] = vectorized_at
        self.documents[document_id] = self.documents[document_id].model_copy(update=update)
        self.status_history.append((document_id, status))

    def reset_for_retry(self, document_id: str) -> bool:
        doc = self.documents.get(document_id)
        if doc is None or not (doc.processing_status is ProcessingStatus.FAILED or self._abandoned(doc)):
            return False
        self.set_status(document_id, ProcessingStatus.PENDING)
        return True

    def stats(self) -> DocumentStats:
        counts = Counter(d.processing_status.value for d in self.documents.values())
        return DocumentStats.from_counts(counts, total_chunks=sum(d.chunks_count for d in self.documents.values()))

    def _abandoned(self, doc: Document) -> bool:
        return (
            doc.processing_status is ProcessingStatus.PROCESSING
            and doc.updated_at is not None
            and doc.updated_at < datetime.now(timezone.utc) - self.claim_ttl
        )


class FakeExtractor:
    """Returns canned text per URL; raises the mapped exception when the value is one."""

    def __init__(self, texts: dict[str, object] | None = None) -> None:
        self.texts = texts or {}
        self.calls: list[tuple[str, str]] = []

    def extract(self, url: str, mime_type: str) -> str:
        self.calls.append((url, mime_type))
        value = self.texts.get(url, "")
        if isinstance(value, Exception):
            raise value
        return value

    def close(self) -> None:
        pass


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def no_sleep() -> list[float]:
    """A list that records requested sleeps instead of sleeping."""
    return []


@pytest.fixture()
def fake_embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture()
def batcher(fake_embeddings: FakeEmbeddings, no_sleep: list[float]) -> EmbeddingBatcher:
    options = EmbeddingOptions(model="fake", batch_size=4, retry_delay=1.0, batch_pause=0.1, expected_dimension=DIM)
    return EmbeddingBatcher(fake_embeddings, options, sleep=no_sleep.append)


@pytest.fixture()
def index_backend() -> InMemoryIndexBackend:
    return InMemoryIndexBackend()


@pytest.fixture()
def index_client(index_backend: InMemoryIndexBackend, no_sleep: list[float]) -> VectorIndexClient:
    return VectorIndexClient(index_backend, batch_size=3, batch_pause=0.1, sleep=no_sleep.append)


@pytest.fixture()
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()
