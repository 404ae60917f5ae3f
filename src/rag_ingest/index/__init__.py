"""
Index — vector-index access behind a backend-agnostic interface.

Public surface
--------------
- :class:`VectorIndexClient` — ensure / upsert / query entry point.
- :class:`VectorIndexBackend` — abstract backend (subclass for Pinecone, etc.).
- :class:`ChromaIndexBackend` — default Chroma backend.
- :func:`sanitize_index_name` — ``[a-z0-9-]`` index names.
"""

from rag_ingest.index.base import VectorIndexBackend
from rag_ingest.index.client import VectorIndexClient, sanitize_index_name

__all__ = [
    "ChromaIndexBackend",
    "VectorIndexBackend",
    "VectorIndexClient",
    "sanitize_index_name",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaIndexBackend to avoid pulling in chromadb at import time."""
    if name == "ChromaIndexBackend":
        from rag_ingest.index.chroma_store import ChromaIndexBackend

        return ChromaIndexBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
