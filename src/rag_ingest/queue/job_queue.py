"""Durable ingestion job queue on Redis + RQ.

Delivery contract
-----------------
* at-least-once; a failing job is retried ``attempts - 1`` times with
  exponential backoff (5s, 10s, … by default) and then lands in the failed
  registry;
* one logical queue for all ingestion jobs, consumed by RQ workers that run
  **one job at a time** per process;
* the newest 100 finished and 50 failed jobs are retained for inspection;
* queue entry ids are ``rag-ingest-{job_id}-{epoch_millis}``, so enqueuing
  the same logical job twice yields two entries.

Usage::

    with IngestionJobQueue("rag-builder", redis_url="redis://localhost:6379/0") as queue:
        queue.enqueue(job)
        print(queue.status())
"""

from __future__ import annotations

import logging
import re
import threading
import time
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from redis import Redis
from redis.exceptions import RedisError
from rq import Callback, Queue, Retry
from rq.job import Job
from rq.registry import FailedJobRegistry, FinishedJobRegistry

from rag_ingest.errors import QueueError
from rag_ingest.queue.jobs import IngestionJob

logger = logging.getLogger(__name__)

TASK_PATH = "rag_ingest.worker.tasks.process_ingestion_job"
JOB_ID_PREFIX = "rag-ingest"

# Finite TTLs keep registry scores ordered by completion time, which the
# count-based trimming below relies on.
_RESULT_TTL = 30 * 24 * 3600
_FAILURE_TTL = 365 * 24 * 3600

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class QueueStatus(BaseModel):
    """Job counts, for operational visibility only."""

    waiting: int
    active: int
    completed: int
    failed: int


class JobInfo(BaseModel):
    """Administrative view of one queue entry."""

    id: str
    status: str
    logical_job_id: str | None = None
    priority: int | None = None
    enqueued_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    retries_left: int | None = None
    result: Any = None
    error: str | None = None


def build_retry_policy(attempts: int, base_backoff_seconds: int) -> Retry | None:
    """RQ retry policy for *attempts* total deliveries with doubling backoff."""
    max_retries = max(0, int(attempts) - 1)
    if max_retries == 0:
        return None
    base = max(1, int(base_backoff_seconds))
    intervals = [base * (2**idx) for idx in range(max_retries)]
    return Retry(max=max_retries, interval=intervals)


def queue_entry_id(job_id: str, now_ms: int | None = None) -> str:
    """Unique queue id for one enqueue of the logical job *job_id*."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{JOB_ID_PREFIX}-{_UNSAFE_ID_CHARS.sub('-', job_id)}-{stamp}"


def trim_registry(registry: Any, keep: int) -> int:
    """Delete all but the newest *keep* jobs in *registry*; return how many were removed."""
    job_ids = registry.get_job_ids()
    excess = job_ids[: max(0, len(job_ids) - keep)]
    for job_id in excess:
        registry.remove(job_id, delete_job=True)
    return len(excess)


# RQ imports callbacks by name, so these must stay module-level functions.
# They run before RQ adds the current job to its registry, so they leave
# room for it.


def retain_recent_finished(job: Job, connection: Redis, result: Any, *args: Any, **kwargs: Any) -> None:
    keep = int(job.meta.get("keep_completed", 100))
    trim_registry(FinishedJobRegistry(job.origin, connection=connection), keep - 1)


def retain_recent_failed(job: Job, connection: Redis, *exc_info: Any, **kwargs: Any) -> None:
    if job.retries_left:
        # Will be rescheduled, not moved to the failed registry.
        return
    keep = int(job.meta.get("keep_failed", 50))
    trim_registry(FailedJobRegistry(job.origin, connection=connection), keep - 1)


class IngestionJobQueue:
    """Producer / admin handle on the ingestion queue.

    Parameters
    ----------
    name:
        Queue name shared by producers and workers.
    redis_url:
        Used to create a connection when *connection* is not given.
    connection:
        A ready Redis connection (tests inject a fake).
    attempts:
        Total deliveries per job, including the first.
    backoff_seconds:
        Delay before the first retry; doubles for each further retry.
    priority:
        Recorded on every job.  All jobs share one priority, so delivery is FIFO.
    keep_completed / keep_failed:
        How many finished / failed jobs to retain.
    job_timeout:
        Optional hard RQ timeout in seconds.
    """

    def __init__(
        self,
        name: str,
        *,
        redis_url: str = "redis://localhost:6379/0",
        connection: Redis | None = None,
        attempts: int = 3,
        backoff_seconds: int = 5,
        priority: int = 1,
        keep_completed: int = 100,
        keep_failed: int = 50,
        job_timeout: int | None = None,
    ) -> None:
        if not name:
            raise ValueError("Queue name is required")
        self.name = name
        self._redis_url = redis_url
        self._connection = connection
        self._queue: Queue | None = None
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.priority = priority
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self.job_timeout = job_timeout
        self._last_stamp = 0
        self._stamp_lock = threading.Lock()

    # -- lifecycle ------------------------------------------------------------

    def open(self) -> IngestionJobQueue:
        """Connect and verify Redis is reachable."""
        if self._queue is not None:
            return self
        connection = self._connection or Redis.from_url(self._redis_url)
        try:
            connection.ping()
        except RedisError as exc:
            raise QueueError(f"Could not connect to Redis: {exc}") from exc
        self._connection = connection
        self._queue = Queue(self.name, connection=connection)
        logger.info("Ingestion queue %r initialized", self.name)
        return self

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
        self._queue = None
        logger.info("Ingestion queue %r connection closed", self.name)

    def __enter__(self) -> IngestionJobQueue:
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def connection(self) -> Redis:
        self._require_open()
        return self._connection  # type: ignore[return-value]

    @property
    def rq_queue(self) -> Queue:
        return self._require_open()

    # -- producer -------------------------------------------------------------

    def enqueue(self, job: IngestionJob) -> str:
        """Add *job* to the queue and return its queue entry id."""
        queue = self._require_open()
        logger.debug("Adding job %s", job.job_id)
        try:
            entry_id = self._next_entry_id(job.job_id)
            queue.enqueue(
                TASK_PATH,
                job.to_wire(),
                job_id=entry_id,
                retry=build_retry_policy(self.attempts, self.backoff_seconds),
                job_timeout=self.job_timeout,
                result_ttl=_RESULT_TTL,
                failure_ttl=_FAILURE_TTL,
                meta={
                    "logical_job_id": job.job_id,
                    "priority": self.priority,
                    "attempts": self.attempts,
                    "keep_completed": self.keep_completed,
                    "keep_failed": self.keep_failed,
                },
                on_success=Callback(retain_recent_finished),
                on_failure=Callback(retain_recent_failed),
            )
        except RedisError as exc:
            raise QueueError(f"Failed to add job {job.job_id} to queue {self.name!r}: {exc}") from exc
        logger.info("Job added to ingestion queue: %s (%s)", job.job_id, entry_id)
        return entry_id

    # -- admin ----------------------------------------------------------------

    def status(self) -> QueueStatus:
        """Counts of waiting (incl. scheduled retries), active, completed and failed jobs."""
        queue = self._require_open()
        try:
            return QueueStatus(
                waiting=queue.count + queue.scheduled_job_registry.count,
                active=queue.started_job_registry.count,
                completed=queue.finished_job_registry.count,
                failed=queue.failed_job_registry.count,
            )
        except RedisError as exc:
            raise QueueError(f"Failed to get queue status: {exc}") from exc

    def get_job(self, entry_id: str) -> JobInfo | None:
        """Look up a queue entry; ``None`` when it does not exist."""
        queue = self._require_open()
        try:
            rq_job = queue.fetch_job(entry_id)
            if rq_job is None:
                return None
            return JobInfo(
                id=rq_job.id,
                status=str(getattr(rq_job.get_status(), "value", rq_job.get_status())),
                logical_job_id=rq_job.meta.get("logical_job_id"),
                priority=rq_job.meta.get("priority"),
                enqueued_at=rq_job.enqueued_at,
                started_at=rq_job.started_at,
                ended_at=rq_job.ended_at,
                retries_left=rq_job.retries_left,
                result=rq_job.return_value(),
                error=rq_job.exc_info,
            )
        except RedisError as exc:
            raise QueueError(f"Failed to fetch job {entry_id}: {exc}") from exc

    def remove_job(self, entry_id: str) -> bool:
        """Delete a queue entry.  Returns ``False`` when no such job exists."""
        queue = self._require_open()
        try:
            rq_job = queue.fetch_job(entry_id)
            if rq_job is None:
                logger.warning("No job found with ID: %s", entry_id)
                return False
            rq_job.delete()
        except RedisError as exc:
            raise QueueError(f"Failed to remove job {entry_id}: {exc}") from exc
        logger.info("Job removed from ingestion queue: %s", entry_id)
        return True

    def trim(self) -> None:
        """Apply the retention limits now."""
        queue = self._require_open()
        trim_registry(queue.finished_job_registry, self.keep_completed)
        trim_registry(queue.failed_job_registry, self.keep_failed)

    # -- internals ------------------------------------------------------------

    def _next_entry_id(self, job_id: str) -> str:
        # The stamp strictly increases per handle; an id already taken in Redis
        # (another producer, same millisecond) moves it on.
        with self._stamp_lock:
            stamp = max(int(time.time() * 1000), self._last_stamp + 1)
            entry_id = queue_entry_id(job_id, stamp)
            while Job.exists(entry_id, connection=self._connection):
                stamp += 1
                entry_id = queue_entry_id(job_id, stamp)
            self._last_stamp = stamp
        return entry_id

    def _require_open(self) -> Queue:
        if self._queue is None:
            raise QueueError(f"Queue {self.name!r} is not open; call open() first")
        return self._queue
