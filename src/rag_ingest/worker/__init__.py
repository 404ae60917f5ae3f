"""
Worker — consumes ingestion jobs and drives them through the pipeline.

Public surface
--------------
- :class:`IngestionWorker` — extract → chunk → embed → upsert state machine.
- :class:`JobReport`, :class:`PipelineStage`.
- :mod:`rag_ingest.worker.tasks` — the RQ task entrypoint (imports ``rq``).
"""

from rag_ingest.worker.pipeline import IngestionWorker, JobReport, PipelineStage

__all__ = ["IngestionWorker", "JobReport", "PipelineStage"]
