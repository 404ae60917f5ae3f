"""
Queue — the durable ingestion job queue and its payload types.

Public surface
--------------
- :class:`IngestionJob`, :class:`FileReference`, :class:`InlineContent` — job payloads.
- :class:`IngestionJobQueue` — Redis / RQ backed queue (imported lazily).
"""

from rag_ingest.queue.jobs import FileReference, IngestionJob, InlineContent

__all__ = [
    "FileReference",
    "IngestionJob",
    "IngestionJobQueue",
    "InlineContent",
    "QueueStatus",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import the RQ queue so payload types can be used without redis installed."""
    if name in ("IngestionJobQueue", "QueueStatus"):
        from rag_ingest.queue import job_queue

        return getattr(job_queue, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
