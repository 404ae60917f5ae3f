"""Text chunking — separator-aware splitting with word-aligned overlap.

The chunker is a pure function of its input: the same text, source id and
options always yield the same chunks with the same ids, which makes vector
upserts idempotent across re-runs.

Every chunk's ``content`` equals ``normalize_text(text)[start_char:end_char]``,
and consecutive chunks overlap by at most ``overlap_size`` characters, so the
chunks cover the normalised text without gaps.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass

from rag_ingest.models import ChunkMetadata, TextChunk

_WHITESPACE = re.compile(r"\s+")

# How far past the overlap cut point we look for the start of a word.
_WORD_BOUNDARY_WINDOW = 50

# Adjacent chunks sharing more than this fraction of the shorter one are merged.
_MERGE_OVERLAP_RATIO = 0.3


@dataclass(frozen=True)
class ChunkingOptions:
    """Parameters for :func:`chunk_text`.

    Attributes
    ----------
    max_chunk_size:
        Target maximum characters per chunk.  A chunk seeded with overlap may
        exceed it by up to ``overlap_size + len(separator)``, and a single
        segment longer than this is never split.
    overlap_size:
        Maximum characters carried over from the end of one chunk into the next.
    separator:
        Segment boundary, paragraphs by default.
    """

    max_chunk_size: int = 1000
    overlap_size: int = 200
    separator: str = "\n\n"

    def __post_init__(self) -> None:
        if self.max_chunk_size <= 0:
            raise ValueError(f"max_chunk_size must be positive, got {self.max_chunk_size}")
        if self.overlap_size < 0:
            raise ValueError(f"overlap_size must be >= 0, got {self.overlap_size}")
        if self.overlap_size >= self.max_chunk_size:
            raise ValueError(
                f"overlap_size ({self.overlap_size}) must be < max_chunk_size ({self.max_chunk_size})"
            )
        if not self.separator:
            raise ValueError("separator must be a non-empty string")


def estimate_tokens(text: str) -> int:
    """Rough token count, ≈4 characters per token."""
    return math.ceil(len(text) / 4)


def _segments(text: str, separator: str) -> list[str]:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    separator = separator.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = (_WHITESPACE.sub(" ", part).strip() for part in text.split(separator))
    return [seg for seg in cleaned if seg]


def normalize_text(text: str, separator: str = "\n\n") -> str:
    """Normalise line endings and whitespace while keeping *separator* boundaries.

    Inside each separator-delimited segment every whitespace run (tabs,
    newlines, repeated spaces) collapses to a single space; empty segments
    are dropped and the rest are re-joined with *separator*.
    """
    return separator.join(_segments(text, separator))


def _overlap_start(text: str, start: int, end: int, overlap_size: int) -> int | None:
    """Offset where the overlap suffix of ``text[start:end]`` begins, or ``None``."""
    if overlap_size <= 0:
        return None
    if end - start <= overlap_size:
        return start

    cut = end - overlap_size
    for i in range(cut, min(cut + _WORD_BOUNDARY_WINDOW, end)):
        if text[i - 1].isspace() and not text[i].isspace():
            return i

    # No word boundary nearby: hard cut, never starting on whitespace.
    while cut < end and text[cut].isspace():
        cut += 1
    return cut if cut < end else None


def _make_chunk(
    normalized: str, start: int, end: int, index: int, source_id: str, source_name: str
) -> TextChunk:
    content = normalized[start:end]
    return TextChunk(
        id=TextChunk.make_id(source_id, index),
        content=content,
        metadata=ChunkMetadata(
            source_id=source_id,
            source_name=source_name,
            chunk_index=index,
            start_char=start,
            end_char=end,
            estimated_tokens=estimate_tokens(content),
        ),
    )


def chunk_text(
    text: str,
    source_id: str,
    source_name: str,
    options: ChunkingOptions | None = None,
) -> list[TextChunk]:
    """Split *text* into ordered, overlapping chunks.

    Parameters
    ----------
    text:
        Raw document text.
    source_id:
        Stable identifier of the source; chunk ids are ``{source_id}-chunk-{i}``.
    source_name:
        Human-readable source name copied into each chunk's metadata.
    options:
        Chunk size, overlap and separator (defaults: 1000 / 200 / ``"\\n\\n"``).

    Returns
    -------
    list[TextChunk]
        Chunks with 0-based contiguous indices; empty for blank input.
    """
    opts = options or ChunkingOptions()
    if not text or not text.strip():
        return []

    separator = opts.separator
    segments = _segments(text, separator)
    normalized = separator.join(segments)
    if not normalized:
        return []

    if len(normalized) <= opts.max_chunk_size:
        return [_make_chunk(normalized, 0, len(normalized), 0, source_id, source_name)]

    spans: list[tuple[int, int]] = []
    buf_start: int | None = None
    buf_end = 0
    offset = 0
    for segment in segments:
        seg_start, seg_end = offset, offset + len(segment)
        offset = seg_end + len(separator)

        if buf_start is None:
            buf_start, buf_end = seg_start, seg_end
            continue

        if (buf_end - buf_start) + len(separator) + len(segment) > opts.max_chunk_size:
            spans.append((buf_start, buf_end))
            overlap_from = _overlap_start(normalized, buf_start, buf_end, opts.overlap_size)
            buf_start = seg_start if overlap_from is None else overlap_from
        buf_end = seg_end

    if buf_start is not None:
        spans.append((buf_start, buf_end))

    return [
        _make_chunk(normalized, start, end, index, source_id, source_name)
        for index, (start, end) in enumerate(spans)
    ]


def _longest_overlap(left: str, right: str) -> int:
    """Length of the longest suffix of *left* that is also a prefix of *right*."""
    for size in range(min(len(left), len(right)), 0, -1):
        if left[-size:] == right[:size]:
            return size
    return 0


def merge_overlapping_chunks(chunks: Sequence[TextChunk]) -> list[TextChunk]:
    """Merge adjacent chunks that overlap by more than 30% of the shorter one.

    Merged content is the first chunk followed by the non-overlapping tail of
    the second.  Indices and ids are renumbered so they stay contiguous.
    """
    if len(chunks) <= 1:
        return list(chunks)

    merged: list[tuple[str, int, int]] = []
    content = chunks[0].content
    start, end = chunks[0].metadata.start_char, chunks[0].metadata.end_char

    for nxt in chunks[1:]:
        overlap = _longest_overlap(content, nxt.content)
        if overlap > min(len(content), len(nxt.content)) * _MERGE_OVERLAP_RATIO:
            content = content + nxt.content[overlap:]
            end = nxt.metadata.end_char
        else:
            merged.append((content, start, end))
            content = nxt.content
            start, end = nxt.metadata.start_char, nxt.metadata.end_char
    merged.append((content, start, end))

    source_id = chunks[0].metadata.source_id
    source_name = chunks[0].metadata.source_name
    return [
        TextChunk(
            id=TextChunk.make_id(source_id, index),
            content=body,
            metadata=ChunkMetadata(
                source_id=source_id,
                source_name=source_name,
                chunk_index=index,
                start_char=body_start,
                end_char=body_end,
                estimated_tokens=estimate_tokens(body),
            ),
        )
        for index, (body, body_start, body_end) in enumerate(merged)
    ]
