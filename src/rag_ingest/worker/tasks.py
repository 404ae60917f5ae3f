"""RQ entrypoint — the function every queued ingestion job calls.

RQ stores only the dotted path of :func:`process_ingestion_job` and its
arguments, so the worker's collaborators live in a per-process runtime:
:func:`run_worker` installs one before it starts consuming, and a bare
``rq worker`` process builds one from settings on its first job.
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Any

from rq import Worker, get_current_job
from rq.job import Job

from rag_ingest.errors import JobPayloadError
from rag_ingest.queue.jobs import IngestionJob, InlineContent
from rag_ingest.runtime import Services, build_services

logger = logging.getLogger(__name__)

_runtime: Services | None = None


def install_runtime(services: Services | None) -> None:
    """Set (or clear, with ``None``) the services used by queued jobs in this process."""
    global _runtime
    _runtime = services


def _services() -> Services:
    global _runtime
    if _runtime is None:
        logger.info("No runtime installed; building one from settings")
        _runtime = build_services().open()
    return _runtime


def _retry_count(current: Job | None) -> int:
    """How many times the current RQ job has already been retried."""
    if current is None or current.retries_left is None:
        return 0
    max_retries = max(0, int(current.meta.get("attempts", 1)) - 1)
    return max(0, max_retries - current.retries_left)


def _unstamped_inline(payload: dict[str, Any], job: IngestionJob) -> bool:
    data = payload.get("data")
    return isinstance(job.payload, InlineContent) and isinstance(data, dict) and data.get("submittedAt") is None


def process_ingestion_job(payload: dict[str, Any]) -> dict[str, Any]:
    """Decode *payload*, run the ingestion pipeline and return the job report.

    Exceptions propagate to RQ, which schedules the next retry or moves the
    job to the failed registry.
    """
    try:
        job = IngestionJob.from_wire(payload)
    except JobPayloadError:
        logger.error("Rejecting undecodable job payload: %r", payload)
        raise

    current = get_current_job()
    updates: dict[str, Any] = {}
    retries = _retry_count(current)
    if retries:
        updates["retry_count"] = retries
    if current is not None and current.created_at is not None and _unstamped_inline(payload, job):
        # The RQ job's creation time is the same on every retry.
        created = current.created_at.replace(tzinfo=current.created_at.tzinfo or timezone.utc)
        updates["payload"] = job.payload.model_copy(update={"submitted_at": int(created.timestamp() * 1000)})
    if updates:
        job = job.model_copy(update=updates)

    report = _services().worker.process(job)
    return report.model_dump()


def run_worker(services: Services | None = None, *, burst: bool = False) -> bool:
    """Consume the ingestion queue in this process, one job at a time.

    Parameters
    ----------
    services:
        Opened services; built from settings when omitted.
    burst:
        Exit once the queue is empty instead of waiting for new jobs.

    Returns
    -------
    bool
        ``True`` when at least one job was processed.
    """
    services = services or build_services().open()
    install_runtime(services)
    queue = services.queue
    worker = Worker([queue.rq_queue], connection=queue.connection)
    logger.info("RAG builder worker started on queue %r", queue.name)
    try:
        # The scheduler moves retried jobs back onto the queue once their backoff elapses.
        return worker.work(
            burst=burst,
            with_scheduler=True,
            logging_level=services.settings.log_level.upper(),
        )
    finally:
        install_runtime(None)
        services.close()
        logger.info("RAG builder worker stopped")
