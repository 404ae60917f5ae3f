"""Embedding generation — batched, retried and paced.

The embedding capability is any LangChain :class:`~langchain_core.embeddings.Embeddings`
implementation.  :func:`get_embeddings` builds the configured provider;
tests inject a fake.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from rag_ingest.errors import EmbeddingError
from rag_ingest.models import Origin, RecordMetadata, TextChunk, VectorRecord

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from rag_ingest.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DIMENSION = 1536


def get_embeddings(settings: Settings, model: str | None = None) -> Embeddings:
    """Return the configured embedding capability.

    ``openai`` uses ``OpenAIEmbeddings`` (optionally against an
    OpenAI-compatible ``embedding_base_url``); ``huggingface`` runs a local
    sentence-transformer.  *model* overrides ``settings.embedding_model``.
    """
    model = model or settings.embedding_model
    provider = settings.embedding_provider.lower()
    if provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        kwargs: dict = {"model": model, "api_key": settings.openai_api_key or None}
        if settings.embedding_base_url:
            logger.info("Using OpenAI-compatible embedding endpoint: %s", settings.embedding_base_url)
            kwargs["base_url"] = settings.embedding_base_url
        return OpenAIEmbeddings(**kwargs)
    if provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(model_name=model)
    raise ValueError(f"Unsupported embedding_provider={settings.embedding_provider!r}")


def validate_embedding(vector: Sequence[float] | None, expected_dimension: int = DEFAULT_DIMENSION) -> bool:
    """Return ``True`` when *vector* is a non-empty sequence of finite numbers.

    A dimension other than *expected_dimension* only logs a warning.
    """
    if not vector:
        return False
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            return False
    if len(vector) != expected_dimension:
        logger.warning("Unexpected embedding dimension: %d, expected %d", len(vector), expected_dimension)
    return True


@dataclass(frozen=True)
class EmbeddingOptions:
    """Batching and retry knobs for :class:`EmbeddingBatcher`.

    ``retry_delay`` and ``batch_pause`` are in seconds.  The wait before
    retry *n* is ``retry_delay * n``.  ``model`` selects the provider model
    in :func:`get_embeddings` and is recorded on every vector.
    """

    model: str = "text-embedding-3-small"
    batch_size: int = 100
    max_retries: int = 3
    retry_delay: float = 1.0
    batch_pause: float = 0.1
    expected_dimension: int = DEFAULT_DIMENSION


class EmbeddingBatcher:
    """Convert text chunks into :class:`VectorRecord` objects.

    Parameters
    ----------
    embeddings:
        The embedding capability.  ``embed_documents`` must return one
        vector per input, in input order.
    options:
        Batch size, retries and pacing.
    sleep:
        Injected for tests; defaults to :func:`time.sleep`.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        options: EmbeddingOptions | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._embeddings = embeddings
        self.options = options or EmbeddingOptions()
        if self.options.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.options.batch_size}")
        self._sleep = sleep

    # -- public API -----------------------------------------------------------

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* batch by batch; result ``i`` belongs to ``texts[i]``."""
        batch_size = self.options.batch_size
        total_batches = math.ceil(len(texts) / batch_size)
        vectors: list[list[float]] = []

        for number, start in enumerate(range(0, len(texts), batch_size), 1):
            batch = list(texts[start : start + batch_size])
            batch_vectors = self._with_retry(
                lambda batch=batch: self._embeddings.embed_documents(batch),
                f"batch {number}/{total_batches}",
            )
            if len(batch_vectors) != len(batch):
                raise EmbeddingError(
                    f"Embedding batch {number}/{total_batches} returned {len(batch_vectors)} "
                    f"vectors for {len(batch)} inputs"
                )
            vectors.extend(batch_vectors)
            logger.info("Generated embeddings for batch %d/%d", number, total_batches)

            if start + batch_size < len(texts):
                self._sleep(self.options.batch_pause)

        return vectors

    def chunks_to_records(
        self,
        chunks: Sequence[TextChunk],
        *,
        origin: Origin = Origin.LOCAL,
        owner_id: str | None = None,
    ) -> list[VectorRecord]:
        """Embed *chunks* and pair each vector with its chunk.

        Records whose vector is missing, empty or non-finite are dropped,
        so the result may be shorter than *chunks*.
        """
        if not chunks:
            return []

        vectors = self.embed_texts([chunk.content for chunk in chunks])
        records: list[VectorRecord] = []
        for chunk, vector in zip(chunks, vectors, strict=True):
            if not validate_embedding(vector, self.options.expected_dimension):
                logger.warning("Dropping chunk %s: invalid embedding", chunk.id)
                continue
            meta = chunk.metadata
            records.append(
                VectorRecord(
                    id=chunk.id,
                    vector=[float(v) for v in vector],
                    metadata=RecordMetadata(
                        content=chunk.content,
                        source_id=meta.source_id,
                        source_name=meta.source_name,
                        chunk_index=meta.chunk_index,
                        start_char=meta.start_char,
                        end_char=meta.end_char,
                        tokens=meta.estimated_tokens,
                        origin=origin,
                        owner_id=owner_id,
                        embedding_model=self.options.model,
                    ),
                )
            )

        logger.info("Created %d vector records from %d chunks", len(records), len(chunks))
        return records

    def embed_with_retry(self, text: str) -> list[float]:
        """Embed a single text (e.g. an ad-hoc query) with linear backoff."""
        return self._with_retry(lambda: self._embeddings.embed_query(text), "single text")

    # -- internals ------------------------------------------------------------

    def _with_retry(self, call: Callable[[], T], description: str) -> T:
        attempts = max(1, self.options.max_retries)
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return call()
            except Exception as exc:
                last_exc = exc
                logger.warning(
                    "Embedding attempt %d/%d for %s failed: %s", attempt, attempts, description, exc
                )
                if attempt < attempts:
                    self._sleep(self.options.retry_delay * attempt)
        raise EmbeddingError(
            f"Failed to generate embeddings for {description} after {attempts} attempts"
        ) from last_exc
