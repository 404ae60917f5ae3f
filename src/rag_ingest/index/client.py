"""Vector-index client — idempotent index creation, paced batch upserts, query.

Usage::

    from rag_ingest.index.chroma_store import ChromaIndexBackend
    from rag_ingest.index.client import VectorIndexClient

    client = VectorIndexClient(ChromaIndexBackend(host="localhost", port=8000))
    name = client.ensure_index("My Docs")      # -> "my-docs"
    client.upsert(name, records)
    matches = client.query(name, query_vector, top_k=5)
"""

from __future__ import annotations

import logging
import math
import re
import time
from collections.abc import Callable, Sequence

from rag_ingest.errors import IndexNotFoundError, UpsertError
from rag_ingest.index.base import VectorIndexBackend
from rag_ingest.models import ScoredRecord, VectorRecord

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 1536

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9-]")


def sanitize_index_name(name: str) -> str:
    """Lower-case *name* and replace every character outside ``[a-z0-9-]`` with ``-``."""
    safe = _UNSAFE_NAME_CHARS.sub("-", name.lower())
    if not safe.strip("-"):
        raise ValueError(f"Index name {name!r} has no usable characters")
    return safe


class VectorIndexClient:
    """High-level client over any :class:`VectorIndexBackend`.

    Parameters
    ----------
    backend:
        Concrete index backend.
    batch_size:
        Records per upsert call.
    batch_pause:
        Seconds to wait between upsert batches, to stay under rate limits.
    metric:
        Similarity metric for newly created indexes.
    sleep:
        Injected for tests; defaults to :func:`time.sleep`.
    """

    def __init__(
        self,
        backend: VectorIndexBackend,
        *,
        batch_size: int = 100,
        batch_pause: float = 0.1,
        metric: str = "cosine",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._backend = backend
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self.metric = metric
        self._sleep = sleep
        self._dimensions: dict[str, int | None] = {}

    @property
    def backend(self) -> VectorIndexBackend:
        return self._backend

    # -- public API -----------------------------------------------------------

    def ensure_index(self, name: str, dimension: int = DEFAULT_DIMENSION) -> str:
        """Create the index if absent and return its sanitised name.

        Safe to call before every ingestion; an existing index is left as is.
        """
        safe_name = sanitize_index_name(name)
        try:
            existing = self._backend.list_indexes()
            if safe_name not in existing:
                self._backend.create_index(safe_name, dimension=dimension, metric=self.metric)
                self._dimensions[safe_name] = dimension
        except Exception as exc:
            raise UpsertError(f"Could not ensure index {safe_name!r}: {exc}") from exc
        return safe_name

    def upsert(self, index_name: str, records: Sequence[VectorRecord]) -> int:
        """Upsert *records* in sequential batches and return how many were written.

        Records whose vector length differs from the index dimension are
        rejected before any write.  The first failing batch raises
        :class:`UpsertError`; batches already written stay committed.
        """
        if not records:
            logger.warning("No vectors provided for upserting")
            return 0

        valid = self._reject_wrong_dimension(index_name, records)
        total_batches = math.ceil(len(valid) / self.batch_size)
        for number, start in enumerate(range(0, len(valid), self.batch_size), 1):
            batch = valid[start : start + self.batch_size]
            try:
                self._backend.upsert(index_name, batch)
            except Exception as exc:
                raise UpsertError(
                    f"Failed to upsert batch {number}/{total_batches} to index {index_name!r}: {exc}"
                ) from exc
            logger.info("Upserted batch %d/%d", number, total_batches)

            if start + self.batch_size < len(valid):
                self._sleep(self.batch_pause)

        logger.info("Successfully upserted %d vectors to index: %s", len(valid), index_name)
        return len(valid)

    def query(self, index_name: str, vector: list[float], top_k: int = 5) -> list[ScoredRecord]:
        """Return the *top_k* matches in the backend's own ranking order.

        Raises :class:`IndexNotFoundError` when *index_name* does not exist.
        """
        if index_name not in self._dimensions and index_name not in self._backend.list_indexes():
            raise IndexNotFoundError(f"Index {index_name!r} does not exist")
        return self._backend.query(index_name, vector, top_k=top_k)

    def health_check(self) -> bool:
        return self._backend.health_check()

    def close(self) -> None:
        self._backend.close()

    # -- internals ------------------------------------------------------------

    def _dimension_of(self, index_name: str) -> int | None:
        if index_name not in self._dimensions:
            self._dimensions[index_name] = self._backend.describe_index(index_name)
        return self._dimensions[index_name]

    def _reject_wrong_dimension(
        self, index_name: str, records: Sequence[VectorRecord]
    ) -> list[VectorRecord]:
        try:
            dimension = self._dimension_of(index_name)
        except Exception as exc:
            raise UpsertError(f"Could not describe index {index_name!r}: {exc}") from exc
        if dimension is None:
            return list(records)

        valid = [r for r in records if len(r.vector) == dimension]
        rejected = len(records) - len(valid)
        if rejected:
            logger.warning(
                "Rejected %d record(s) whose vector length != %d for index %s",
                rejected,
                dimension,
                index_name,
            )
        return valid
