"""Ingestion job payloads and their cross-process wire format.

A job carries exactly one of two payload variants, discriminated by
``kind``:

* :class:`FileReference` — pull-based processing of registered documents.
  ``document_id=None`` means *batch mode*: every ``pending`` / ``failed``
  document is processed.
* :class:`InlineContent` — text already extracted by the producer
  (e.g. a Google-Drive sync).

Wire shape (camelCase, JSON-compatible)::

    {
      "jobId": "doc-42",
      "retryCount": 0,
      "kind": "file_reference" | "inline_content",   # optional
      "documentId": "...", "sourceUrl": "...", "mimeType": "...",
      "data": {"ownerId": "...", "fileName": "...", "content": "...",
               "externalFileId": "...", "mimeType": "...",
               "origin": "drive" | "local", "sourceId": "...",
               "submittedAt": 1718000000000}
    }

Without ``kind``, a payload with ``data`` is inline content and one without
it is a file reference.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rag_ingest.errors import JobPayloadError
from rag_ingest.models import Origin

FILE_REFERENCE = "file_reference"
INLINE_CONTENT = "inline_content"

# Older producers tag Drive content as "google-drive".
_ORIGIN_ALIASES = {"google-drive": Origin.DRIVE.value}


def epoch_millis() -> int:
    return int(time.time() * 1000)


class FileReference(BaseModel):
    """Process one registered document, or all processable ones when ``document_id`` is ``None``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["file_reference"] = FILE_REFERENCE
    document_id: str | None = None
    source_url: str | None = None
    mime_type: str | None = None

    @property
    def is_batch(self) -> bool:
        return self.document_id is None


class InlineContent(BaseModel):
    """Pre-extracted content to chunk and index directly.

    ``source_id`` pins the vector ids.  Without it the worker derives one
    stamped with ``submitted_at`` (epoch millis, fixed when the payload is
    built), so queue retries of one job overwrite the same vectors while each
    new submission is indexed under its own id.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["inline_content"] = INLINE_CONTENT
    owner_id: str
    file_name: str
    content: str
    external_file_id: str | None = None
    mime_type: str | None = None
    origin: Origin = Origin.DRIVE
    source_id: str | None = None
    submitted_at: int = Field(default_factory=epoch_millis, ge=0)


JobPayload = Annotated[FileReference | InlineContent, Field(discriminator="kind")]


class IngestionJob(BaseModel):
    """A unit of ingestion work.  Immutable once built."""

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(min_length=1)
    payload: JobPayload
    retry_count: int = Field(default=0, ge=0)

    # -- wire codec -----------------------------------------------------------

    def to_wire(self) -> dict[str, Any]:
        """Encode as the camelCase wire dict."""
        wire: dict[str, Any] = {
            "jobId": self.job_id,
            "retryCount": self.retry_count,
            "kind": self.payload.kind,
        }
        payload = self.payload
        if isinstance(payload, InlineContent):
            data: dict[str, Any] = {
                "ownerId": payload.owner_id,
                "fileName": payload.file_name,
                "content": payload.content,
                "origin": payload.origin.value,
                "submittedAt": payload.submitted_at,
            }
            for key, value in (
                ("externalFileId", payload.external_file_id),
                ("mimeType", payload.mime_type),
                ("sourceId", payload.source_id),
            ):
                if value is not None:
                    data[key] = value
            wire["data"] = data
        else:
            for key, value in (
                ("documentId", payload.document_id),
                ("sourceUrl", payload.source_url),
                ("mimeType", payload.mime_type),
            ):
                if value is not None:
                    wire[key] = value
        return wire

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any]) -> IngestionJob:
        """Decode a wire dict, raising :class:`JobPayloadError` when it is malformed."""
        if not isinstance(raw, Mapping):
            raise JobPayloadError(f"Job payload must be a mapping, got {type(raw).__name__}")

        kind = raw.get("kind") or (INLINE_CONTENT if raw.get("data") is not None else FILE_REFERENCE)
        try:
            if kind == INLINE_CONTENT:
                data = raw.get("data")
                if not isinstance(data, Mapping):
                    raise JobPayloadError("Inline-content job is missing its 'data' object")
                origin = data.get("origin", Origin.DRIVE.value)
                # Older producers do not stamp their payloads.
                stamp = {"submitted_at": data["submittedAt"]} if data.get("submittedAt") is not None else {}
                payload: FileReference | InlineContent = InlineContent(
                    owner_id=data.get("ownerId"),
                    file_name=data.get("fileName"),
                    content=data.get("content"),
                    external_file_id=data.get("externalFileId"),
                    mime_type=data.get("mimeType"),
                    origin=_ORIGIN_ALIASES.get(origin, origin),
                    source_id=data.get("sourceId"),
                    **stamp,
                )
            elif kind == FILE_REFERENCE:
                payload = FileReference(
                    document_id=raw.get("documentId"),
                    source_url=raw.get("sourceUrl"),
                    mime_type=raw.get("mimeType"),
                )
            else:
                raise JobPayloadError(f"Unknown job kind: {kind!r}")

            return cls(job_id=raw.get("jobId"), payload=payload, retry_count=raw.get("retryCount") or 0)
        except ValidationError as exc:
            raise JobPayloadError(f"Invalid job payload: {exc}") from exc
