"""Chroma implementation of the vector-index abstraction."""

from __future__ import annotations

import logging
from typing import Any

import chromadb

from rag_ingest.index.base import VectorIndexBackend
from rag_ingest.models import ScoredRecord, VectorRecord

logger = logging.getLogger(__name__)

_SPACE_KEY = "hnsw:space"
_DIMENSION_KEY = "dimension"


def _distance_to_score(distance: float, space: str) -> float:
    """Convert a Chroma distance into a similarity score (higher = more similar)."""
    if space in ("cosine", "ip"):
        return 1.0 - distance
    # L2 distance is unbounded; map it into (0, 1].
    return 1.0 / (1.0 + distance)


class ChromaIndexBackend(VectorIndexBackend):
    """Chroma-backed vector index.  One Chroma collection per index.

    Parameters
    ----------
    host / port:
        Chroma server location, used when neither *client* nor *path* is given.
    path:
        Directory for an embedded ``PersistentClient``.
    client:
        A ready Chroma client (tests inject a fake).
    """

    def __init__(
        self,
        *,
        host: str = "localhost",
        port: int = 8000,
        path: str = "",
        client: Any | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif path:
            self._client = chromadb.PersistentClient(path=path)
        else:
            self._client = chromadb.HttpClient(host=host, port=port)
        self._spaces: dict[str, str] = {}

    # -- VectorIndexBackend overrides -----------------------------------------

    def list_indexes(self) -> list[str]:
        # Chroma 0.6 returns names, other releases return Collection objects.
        return [c if isinstance(c, str) else c.name for c in self._client.list_collections()]

    def create_index(self, name: str, *, dimension: int, metric: str = "cosine") -> None:
        self._client.create_collection(
            name=name,
            metadata={_SPACE_KEY: metric, _DIMENSION_KEY: dimension},
        )
        self._spaces[name] = metric
        logger.info("Created Chroma collection %r (dim=%d, metric=%s)", name, dimension, metric)

    def describe_index(self, name: str) -> int | None:
        meta = self._client.get_collection(name).metadata or {}
        self._spaces.setdefault(name, meta.get(_SPACE_KEY, "l2"))
        dimension = meta.get(_DIMENSION_KEY)
        return int(dimension) if dimension is not None else None

    def upsert(self, name: str, records: list[VectorRecord]) -> None:
        collection = self._client.get_collection(name)
        collection.upsert(
            ids=[r.id for r in records],
            embeddings=[r.vector for r in records],
            documents=[r.metadata.content for r in records],
            metadatas=[r.metadata.to_flat_dict() for r in records],
        )

    def query(self, name: str, vector: list[float], *, top_k: int = 5) -> list[ScoredRecord]:
        collection = self._client.get_collection(name)
        space = self._spaces.get(name) or (collection.metadata or {}).get(_SPACE_KEY, "l2")
        results = collection.query(
            query_embeddings=[vector],
            n_results=top_k,
            include=["documents", "metadatas", "distances"],
        )

        ids = (results.get("ids") or [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        matches: list[ScoredRecord] = []
        for record_id, content, meta, dist in zip(ids, docs, metas, distances):
            metadata = dict(meta or {})
            metadata.setdefault("content", content or "")
            matches.append(
                ScoredRecord(id=record_id, score=_distance_to_score(dist, space), metadata=metadata)
            )
        return matches

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
