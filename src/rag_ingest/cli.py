"""Command-line interface for the ingestion queue and worker.

Usage::

    # Start a worker (one job at a time; run more processes to scale out):
    rag-ingest worker

    # Queue one registered document, or every pending / failed one:
    rag-ingest enqueue doc-42
    rag-ingest enqueue

    # Queue already-extracted text:
    rag-ingest ingest-text notes.txt --owner user-1 --origin local

    # Inspect and administer:
    rag-ingest status
    rag-ingest stats
    rag-ingest job rag-ingest-doc-42-1718000000000
    rag-ingest remove-job rag-ingest-doc-42-1718000000000
    rag-ingest retry doc-42
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from rag_ingest.config import settings
from rag_ingest.errors import IngestionError
from rag_ingest.models import Origin
from rag_ingest.queue.producer import enqueue_batch, enqueue_inline_content, enqueue_upload, retry_document
from rag_ingest.runtime import build_queue, build_store, configure_logging

logger = logging.getLogger(__name__)


# ── Commands ──────────────────────────────────────────────────────────
def _cmd_worker(args: argparse.Namespace) -> int:
    from rag_ingest.worker.tasks import run_worker

    run_worker(burst=args.burst)
    return 0


def _cmd_enqueue(args: argparse.Namespace) -> int:
    with build_queue(settings) as queue:
        if args.document_id:
            entry_id = enqueue_upload(
                queue, args.document_id, source_url=args.source_url, mime_type=args.mime_type
            )
        else:
            entry_id = enqueue_batch(queue)
    print(entry_id)
    return 0


def _cmd_ingest_text(args: argparse.Namespace) -> int:
    if str(args.path) == "-":
        content, file_name = sys.stdin.read(), args.name or "stdin"
    else:
        content, file_name = args.path.read_text(encoding="utf-8"), args.name or args.path.name
    if not content.strip():
        print(f"ERROR: {file_name} is empty", file=sys.stderr)
        return 1

    with build_queue(settings) as queue:
        entry_id = enqueue_inline_content(
            queue,
            owner_id=args.owner,
            file_name=file_name,
            content=content,
            mime_type=args.mime_type,
            origin=Origin(args.origin),
            source_id=args.source_id,
        )
    print(entry_id)
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    with build_queue(settings) as queue:
        print(queue.status().model_dump_json(indent=2))
    return 0


def _cmd_job(args: argparse.Namespace) -> int:
    with build_queue(settings) as queue:
        info = queue.get_job(args.entry_id)
    if info is None:
        print(f"Job not found: {args.entry_id}", file=sys.stderr)
        return 1
    print(info.model_dump_json(indent=2))
    return 0


def _cmd_remove_job(args: argparse.Namespace) -> int:
    with build_queue(settings) as queue:
        removed = queue.remove_job(args.entry_id)
    if not removed:
        print(f"Job not found: {args.entry_id}", file=sys.stderr)
        return 1
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    store = build_store(settings)
    store.open()
    try:
        print(store.stats().model_dump_json(indent=2))
    finally:
        store.close()
    return 0


def _cmd_retry(args: argparse.Namespace) -> int:
    store = build_store(settings)
    store.open()
    try:
        with build_queue(settings) as queue:
            entry_id = retry_document(store, queue, args.document_id)
    except (LookupError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(entry_id)
    return 0


# ── Parser ────────────────────────────────────────────────────────────
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rag-ingest",
        description="Queue documents for vectorization and run ingestion workers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL (e.g. DEBUG)")
    sub = parser.add_subparsers(dest="command", required=True)

    worker = sub.add_parser("worker", help="Consume the ingestion queue")
    worker.add_argument("--burst", action="store_true", help="Exit once the queue is empty")
    worker.set_defaults(func=_cmd_worker)

    enqueue = sub.add_parser("enqueue", help="Queue a registered document (or all processable ones)")
    enqueue.add_argument("document_id", nargs="?", default=None, help="Omit to process every pending/failed document")
    enqueue.add_argument("--source-url", default=None)
    enqueue.add_argument("--mime-type", default=None)
    enqueue.set_defaults(func=_cmd_enqueue)

    ingest = sub.add_parser("ingest-text", help="Queue already-extracted text from a file ('-' for stdin)")
    ingest.add_argument("path", type=Path)
    ingest.add_argument("--owner", required=True, help="Owner (user) id")
    ingest.add_argument("--name", default=None, help="File name recorded with the vectors")
    ingest.add_argument("--origin", choices=[o.value for o in Origin], default=Origin.LOCAL.value)
    ingest.add_argument("--mime-type", default="text/plain")
    ingest.add_argument("--source-id", default=None, help="Stable source id; vector ids derive from it")
    ingest.set_defaults(func=_cmd_ingest_text)

    status = sub.add_parser("status", help="Show queue counts")
    status.set_defaults(func=_cmd_status)

    job = sub.add_parser("job", help="Show one queue entry")
    job.add_argument("entry_id")
    job.set_defaults(func=_cmd_job)

    remove = sub.add_parser("remove-job", help="Delete one queue entry")
    remove.add_argument("entry_id")
    remove.set_defaults(func=_cmd_remove_job)

    stats = sub.add_parser("stats", help="Show document counts per processing status")
    stats.set_defaults(func=_cmd_stats)

    retry = sub.add_parser("retry", help="Reset a failed document to pending and queue it again")
    retry.add_argument("document_id")
    retry.set_defaults(func=_cmd_retry)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        return args.func(args)
    except IngestionError as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
