"""
Ingestion — content extraction, chunking, and embedding.

This package turns a source document (a URL / path plus MIME type, or
already-extracted text) into embedded chunks ready for the vector index.
Nothing here touches the queue or the document-status store.
"""
