"""Exception taxonomy for the ingestion pipeline.

Every error raised by this package derives from :class:`IngestionError`, so
callers that only care about "the pipeline failed" can catch one type.
Library exceptions (``requests``, ``redis``, ``chromadb``, ``openai``) are
wrapped with ``raise ... from exc`` at the boundary where they occur.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for all pipeline errors."""


class ExtractionError(IngestionError):
    """The source could not be fetched, parsed, or produced no text."""


class EmbeddingError(IngestionError):
    """The embedding capability failed after all retries, or returned misaligned output."""


class UpsertError(IngestionError):
    """A vector-index write failed.  Batches written before the failure stay committed."""


class QueueError(IngestionError):
    """The queue backing store is unreachable or rejected an operation."""


class JobPayloadError(IngestionError, ValueError):
    """A queue payload could not be decoded into an :class:`IngestionJob`."""


class IndexNotFoundError(IngestionError, LookupError):
    """A query named a vector index that does not exist (nothing ingested into it yet)."""
