"""
Documents — processing-status records for ingested documents.

Public surface
--------------
- :class:`Document`, :class:`DocumentStats`, :class:`ProcessingStatus` — data models.
- :class:`DocumentStatusStore` — abstract store.
- :class:`SQLAlchemyDocumentStatusStore` — default SQL-backed store.
"""

from rag_ingest.documents.base import DocumentStatusStore
from rag_ingest.documents.models import PROCESSABLE_STATUSES, Document, DocumentStats, ProcessingStatus

__all__ = [
    "PROCESSABLE_STATUSES",
    "Document",
    "DocumentStats",
    "DocumentStatusStore",
    "ProcessingStatus",
    "SQLAlchemyDocumentStatusStore",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import the SQL store to avoid pulling in SQLAlchemy at import time."""
    if name == "SQLAlchemyDocumentStatusStore":
        from rag_ingest.documents.sql_store import SQLAlchemyDocumentStatusStore

        return SQLAlchemyDocumentStatusStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
