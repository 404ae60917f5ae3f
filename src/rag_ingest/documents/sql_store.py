"""SQLAlchemy implementation of the document-status store.

Claims use a conditional ``UPDATE ... WHERE processing_status IN
('pending', 'failed')`` so that, with several worker processes sharing one
database, exactly one of them wins each document.  A claim is a lease:
``processing`` rows untouched for longer than ``claim_ttl`` (a worker that
died mid-document) can be claimed again, and the job that holds a claim can
re-take it when the queue redelivers that job.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import DateTime, Integer, String, Text, and_, create_engine, func, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from rag_ingest.documents.base import DocumentStatusStore
from rag_ingest.documents.models import PROCESSABLE_STATUSES, Document, DocumentStats, ProcessingStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    processing_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ProcessingStatus.PENDING.value, index=True
    )
    chunks_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    claimed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vectorized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


_PROCESSABLE = [s.value for s in PROCESSABLE_STATUSES]


class SQLAlchemyDocumentStatusStore(DocumentStatusStore):
    """Document-status store on any SQLAlchemy-supported database.

    Parameters
    ----------
    url:
        Database URL, e.g. ``sqlite:///./rag_ingest.db`` or a Postgres DSN.
    engine:
        A ready engine; takes precedence over *url*.
    claim_ttl:
        How long a ``processing`` claim holds before it counts as abandoned.
    clock:
        Returns "now"; injected for tests.
    """

    def __init__(
        self,
        url: str = "sqlite:///./rag_ingest.db",
        *,
        engine: Engine | None = None,
        claim_ttl: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._engine = engine or create_engine(url)
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)
        self.claim_ttl = claim_ttl
        self._clock = clock

    def open(self) -> None:
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        self._engine.dispose()

    # -- DocumentStatusStore overrides ----------------------------------------

    def add(self, document: Document) -> Document:
        row = DocumentRow(
            id=document.id,
            name=document.name,
            source_url=document.source_url,
            mime_type=document.mime_type,
            owner_id=document.owner_id,
            processing_status=document.processing_status.value,
            chunks_count=document.chunks_count,
            claimed_by=document.claimed_by,
            vectorized_at=document.vectorized_at,
            updated_at=document.updated_at or self._clock(),
        )
        with self._sessions.begin() as session:
            session.add(row)
            session.flush()
            return Document.model_validate(row)

    def get(self, document_id: str) -> Document | None:
        with self._sessions() as session:
            row = session.get(DocumentRow, document_id)
            return Document.model_validate(row) if row is not None else None

    def find_processable(self, limit: int | None = None) -> list[Document]:
        stmt = (
            select(DocumentRow)
            .where(or_(DocumentRow.processing_status.in_(_PROCESSABLE), self._abandoned()))
            .order_by(DocumentRow.created_at, DocumentRow.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._sessions() as session:
            return [Document.model_validate(row) for row in session.scalars(stmt)]

    def claim(self, document_id: str, owner: str | None = None) -> bool:
        claimable = [DocumentRow.processing_status.in_(_PROCESSABLE), self._abandoned()]
        if owner is not None:
            claimable.append(
                and_(
                    DocumentRow.processing_status == ProcessingStatus.PROCESSING.value,
                    DocumentRow.claimed_by == owner,
                )
            )
        return self._conditional_update(
            document_id, or_(*claimable), ProcessingStatus.PROCESSING, claimed_by=owner
        )

    def set_status(
        self,
        document_id: str,
        status: ProcessingStatus,
        *,
        chunks_count: int | None = None,
        vectorized_at: datetime | None = None,
    ) -> None:
        values: dict = {"processing_status": status.value, "updated_at": self._clock()}
        if status is not ProcessingStatus.PROCESSING:
            values["claimed_by"] = None
        if chunks_count is not None:
            values["chunks_count"] = chunks_count
        if vectorized_at is not None:
            values["vectorized_at"] = vectorized_at

        with self._sessions.begin() as session:
            result = session.execute(update(DocumentRow).where(DocumentRow.id == document_id).values(**values))
        if result.rowcount == 0:
            logger.warning("set_status(%s, %s): no such document", document_id, status.value)

    def reset_for_retry(self, document_id: str) -> bool:
        return self._conditional_update(
            document_id,
            or_(DocumentRow.processing_status == ProcessingStatus.FAILED.value, self._abandoned()),
            ProcessingStatus.PENDING,
        )

    def stats(self) -> DocumentStats:
        stmt = select(
            DocumentRow.processing_status,
            func.count(DocumentRow.id),
            func.coalesce(func.sum(DocumentRow.chunks_count), 0),
        ).group_by(DocumentRow.processing_status)
        with self._sessions() as session:
            rows = session.execute(stmt).all()
        return DocumentStats.from_counts(
            {status: count for status, count, _ in rows},
            total_chunks=sum(int(chunks) for _, _, chunks in rows),
        )

    # -- internals ------------------------------------------------------------

    def _abandoned(self):
        """``processing`` rows whose claim is older than the lease."""
        return and_(
            DocumentRow.processing_status == ProcessingStatus.PROCESSING.value,
            DocumentRow.updated_at < self._clock() - self.claim_ttl,
        )

    def _conditional_update(
        self, document_id: str, condition, to: ProcessingStatus, claimed_by: str | None = None
    ) -> bool:
        stmt = (
            update(DocumentRow)
            .where(DocumentRow.id == document_id, condition)
            .values(processing_status=to.value, claimed_by=claimed_by, updated_at=self._clock())
        )
        with self._sessions.begin() as session:
            result = session.execute(stmt)
        return result.rowcount == 1
