"""Domain models shared by the chunker, the embedder and the vector index."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Origin(str, Enum):
    """Provenance tag describing how content entered the pipeline."""

    DRIVE = "drive"
    LOCAL = "local"


class ChunkMetadata(BaseModel):
    """Position of a chunk inside its normalised source text.

    Attributes
    ----------
    source_id:
        Identifier of the source document (document id or synthetic id).
    source_name:
        Human-readable name, usually the file name.
    chunk_index:
        0-based, contiguous ordinal of the chunk within the source.
    start_char / end_char:
        Half-open ``[start, end)`` offsets into the normalised text.
    estimated_tokens:
        ``ceil(len(content) / 4)``.
    """

    source_id: str
    source_name: str
    chunk_index: int = Field(ge=0)
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)
    estimated_tokens: int = Field(ge=0)


class TextChunk(BaseModel):
    """A bounded, overlapping substring of a source document."""

    id: str
    content: str
    metadata: ChunkMetadata

    @staticmethod
    def make_id(source_id: str, chunk_index: int) -> str:
        """Return the deterministic chunk id ``{source_id}-chunk-{index}``."""
        return f"{source_id}-chunk-{chunk_index}"


class RecordMetadata(BaseModel):
    """Metadata stored next to each vector in the index."""

    content: str
    source_id: str
    source_name: str
    chunk_index: int
    start_char: int
    end_char: int
    tokens: int = 0
    origin: Origin = Origin.LOCAL
    owner_id: str | None = None
    embedding_model: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_flat_dict(self) -> dict[str, Any]:
        """Flatten to index-safe scalars: enums as values, datetimes as ISO strings, no ``None``."""
        flat: dict[str, Any] = {}
        for key, value in self.model_dump(mode="json").items():
            if value is None:
                continue
            flat[key] = value
        return flat


class VectorRecord(BaseModel):
    """One embedded chunk, ready to be upserted.  ``id`` equals the chunk id."""

    id: str
    vector: list[float]
    metadata: RecordMetadata


class ScoredRecord(BaseModel):
    """A query match returned by the vector index (higher score = more similar)."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def content(self) -> str:
        return str(self.metadata.get("content", ""))
