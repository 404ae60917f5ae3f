"""
rag-ingest — queue-driven document ingestion into a vector index.

Documents are pulled from a durable job queue, extracted to plain text,
split into overlapping chunks, embedded in batches and upserted into a
named vector collection for retrieval-augmented generation.
"""

__version__ = "0.1.0"
