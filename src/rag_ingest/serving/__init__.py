"""
Serving — FastAPI application for queue administration and ingestion.

Exposes inline ingestion, document retry, job lookup / removal, queue
counts and a vector search endpoint over HTTP.
"""
