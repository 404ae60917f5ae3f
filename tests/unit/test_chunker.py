"""Unit tests for the chunker module."""

from __future__ import annotations

import pytest

from rag_ingest.ingestion.chunker import (
    ChunkingOptions,
    chunk_text,
    estimate_tokens,
    merge_overlapping_chunks,
    normalize_text,
)
from rag_ingest.models import ChunkMetadata, TextChunk


def _paragraph(tag: str, words: int = 115) -> str:
    """~800 characters of distinct 6-char words (``p1w000 p1w001 ...``)."""
    return " ".join(f"{tag}w{i:03d}" for i in range(words))


THREE_PARAGRAPHS = "\n\n".join(_paragraph(f"p{n}") for n in (1, 2, 3))


def _chunk(index: int, content: str, start: int) -> TextChunk:
    return TextChunk(
        id=TextChunk.make_id("src", index),
        content=content,
        metadata=ChunkMetadata(
            source_id="src",
            source_name="src.txt",
            chunk_index=index,
            start_char=start,
            end_char=start + len(content),
            estimated_tokens=estimate_tokens(content),
        ),
    )


# ── ChunkingOptions ────────────────────────────────────────────────────


class TestChunkingOptions:
    def test_defaults(self) -> None:
        opts = ChunkingOptions()
        assert (opts.max_chunk_size, opts.overlap_size, opts.separator) == (1000, 200, "\n\n")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_chunk_size": 0},
            {"overlap_size": -1},
            {"max_chunk_size": 100, "overlap_size": 100},
            {"separator": ""},
        ],
    )
    def test_invalid_options_rejected(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            ChunkingOptions(**kwargs)


# ── normalisation ──────────────────────────────────────────────────────


class TestNormalizeText:
    def test_collapses_whitespace_inside_segments(self) -> None:
        assert normalize_text("Hello \t  world\nagain") == "Hello world again"

    def test_keeps_separator_boundaries(self) -> None:
        text = "First  para.\r\n\r\nSecond\tpara.\n\n\n\nThird."
        assert normalize_text(text) == "First para.\n\nSecond para.\n\nThird."

    def test_blank_input(self) -> None:
        assert normalize_text("   \n\n  \t ") == ""


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


# ── chunk_text ─────────────────────────────────────────────────────────


class TestChunkText:
    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
    def test_blank_input_yields_no_chunks(self, text: str) -> None:
        assert chunk_text(text, "src", "src.txt") == []

    def test_short_text_is_one_normalised_chunk(self) -> None:
        text = "Hello   world\n\nSecond\tparagraph"
        chunks = chunk_text(text, "src", "src.txt")
        assert len(chunks) == 1
        assert chunks[0].content == normalize_text(text)
        assert chunks[0].id == "src-chunk-0"
        assert chunks[0].metadata.start_char == 0
        assert chunks[0].metadata.end_char == len(chunks[0].content)

    def test_three_paragraphs_yield_three_overlapping_chunks(self) -> None:
        assert 2350 <= len(THREE_PARAGRAPHS) <= 2450

        chunks = chunk_text(THREE_PARAGRAPHS, "doc-1", "doc.txt", ChunkingOptions(1000, 200, "\n\n"))

        assert [c.metadata.chunk_index for c in chunks] == [0, 1, 2]
        first, second = chunks[0], chunks[1]
        overlap = first.metadata.end_char - second.metadata.start_char
        assert 0 < overlap <= 200
        shared = first.content[-overlap:]
        assert second.content.startswith(shared)
        # The carried-over text starts on a word.
        assert not shared[0].isspace()
        assert first.content[-overlap - 1].isspace()

    def test_chunks_cover_normalised_text_without_gaps(self) -> None:
        text = "\n\n".join(_paragraph(f"s{n}", words=40 + n * 7) for n in range(12))
        normalized = normalize_text(text)
        chunks = chunk_text(text, "src", "src.txt", ChunkingOptions(max_chunk_size=600, overlap_size=120))

        assert chunks[0].metadata.start_char == 0
        assert chunks[-1].metadata.end_char == len(normalized)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert prev.metadata.start_char < nxt.metadata.start_char <= prev.metadata.end_char
            assert prev.metadata.end_char - nxt.metadata.start_char <= 120

    def test_content_matches_normalised_slice(self) -> None:
        normalized = normalize_text(THREE_PARAGRAPHS)
        for chunk in chunk_text(THREE_PARAGRAPHS, "src", "src.txt"):
            meta = chunk.metadata
            assert chunk.content == normalized[meta.start_char : meta.end_char]
            assert meta.estimated_tokens == estimate_tokens(chunk.content)

    def test_ids_are_deterministic(self) -> None:
        first = chunk_text(THREE_PARAGRAPHS, "doc-7", "doc.txt")
        second = chunk_text(THREE_PARAGRAPHS, "doc-7", "doc.txt")
        assert [c.id for c in first] == ["doc-7-chunk-0", "doc-7-chunk-1", "doc-7-chunk-2"]
        assert [c.model_dump() for c in first] == [c.model_dump() for c in second]

    def test_metadata_carries_source(self) -> None:
        chunks = chunk_text(THREE_PARAGRAPHS, "doc-7", "report.pdf")
        assert all(c.metadata.source_id == "doc-7" for c in chunks)
        assert all(c.metadata.source_name == "report.pdf" for c in chunks)

    def test_oversized_segment_is_kept_whole(self) -> None:
        text = "x" * 1500
        chunks = chunk_text(text, "src", "src.txt")
        assert len(chunks) == 1
        assert chunks[0].content == text

    def test_hard_cut_without_word_boundary(self) -> None:
        text = "\n\n".join(["a" * 600, "b" * 600])
        chunks = chunk_text(text, "src", "src.txt")
        assert len(chunks) == 2
        assert chunks[1].content.startswith("a" * 200)
        assert chunks[1].content.endswith("b" * 600)

    def test_zero_overlap_splits_on_segments(self) -> None:
        opts = ChunkingOptions(max_chunk_size=1000, overlap_size=0)
        chunks = chunk_text(THREE_PARAGRAPHS, "src", "src.txt", opts)
        assert len(chunks) == 3
        assert "\n\n".join(c.content for c in chunks) == normalize_text(THREE_PARAGRAPHS)

    def test_custom_separator(self) -> None:
        text = " | ".join(_paragraph(f"q{n}", words=20) for n in range(10))
        opts = ChunkingOptions(max_chunk_size=300, overlap_size=50, separator=" | ")
        chunks = chunk_text(text, "src", "src.txt", opts)
        assert len(chunks) > 1
        assert chunks[-1].metadata.end_char == len(normalize_text(text, " | "))


# ── merge_overlapping_chunks ───────────────────────────────────────────


class TestMergeOverlappingChunks:
    def test_merges_heavily_overlapping_neighbours(self) -> None:
        chunks = [
            _chunk(0, "the quick brown fox jumps", 0),
            _chunk(1, "fox jumps over the lazy dog", 16),
            _chunk(2, "completely different", 60),
        ]
        merged = merge_overlapping_chunks(chunks)

        assert [c.content for c in merged] == [
            "the quick brown fox jumps over the lazy dog",
            "completely different",
        ]
        assert [c.id for c in merged] == ["src-chunk-0", "src-chunk-1"]
        assert [c.metadata.chunk_index for c in merged] == [0, 1]
        assert merged[0].metadata.end_char == 16 + len("fox jumps over the lazy dog")
        assert merged[1].metadata.start_char == 60

    def test_small_overlap_is_left_alone(self) -> None:
        chunks = [_chunk(0, "alpha beta gamma delta", 0), _chunk(1, "delta epsilon zeta eta theta", 17)]
        merged = merge_overlapping_chunks(chunks)
        assert [c.content for c in merged] == [c.content for c in chunks]

    def test_single_and_empty(self) -> None:
        assert merge_overlapping_chunks([]) == []
        only = [_chunk(0, "solo", 0)]
        assert merge_overlapping_chunks(only) == only
