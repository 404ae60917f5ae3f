"""Retention limits, exercised with a real RQ worker on an in-memory Redis."""

from __future__ import annotations

from unittest.mock import MagicMock

import fakeredis
import pytest
from rq import SimpleWorker

from rag_ingest.queue.job_queue import IngestionJobQueue
from rag_ingest.queue.jobs import FileReference, IngestionJob
from rag_ingest.worker import tasks
from rag_ingest.worker.pipeline import JobReport


@pytest.fixture()
def services():
    svc = MagicMock()
    svc.worker.process.side_effect = lambda job: JobReport(job_id=job.job_id, mode="document")
    tasks.install_runtime(svc)
    yield svc
    tasks.install_runtime(None)


@pytest.fixture()
def queue():
    connection = fakeredis.FakeStrictRedis()
    q = IngestionJobQueue(
        "rag-builder", connection=connection, attempts=1, keep_completed=2, keep_failed=1
    ).open()
    yield q
    q.close()


def _run(queue: IngestionJobQueue, jobs: int) -> list[str]:
    job = IngestionJob(job_id="doc-1", payload=FileReference(document_id="doc-1"))
    entry_ids = [queue.enqueue(job) for _ in range(jobs)]
    SimpleWorker([queue.rq_queue], connection=queue.connection).work(burst=True)
    return entry_ids


def test_keeps_newest_finished_jobs(queue: IngestionJobQueue, services: MagicMock) -> None:
    entry_ids = _run(queue, 5)

    registry = queue.rq_queue.finished_job_registry
    assert registry.count == 2
    assert sorted(registry.get_job_ids()) == entry_ids[-2:]
    assert queue.get_job(entry_ids[0]) is None
    assert services.worker.process.call_count == 5


def test_keeps_newest_failed_jobs(queue: IngestionJobQueue, services: MagicMock) -> None:
    services.worker.process.side_effect = RuntimeError("boom")

    entry_ids = _run(queue, 3)

    registry = queue.rq_queue.failed_job_registry
    assert registry.count == 1
    assert registry.get_job_ids() == entry_ids[-1:]
