"""Unit tests for content extraction."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from rag_ingest.errors import ExtractionError
from rag_ingest.ingestion.loader import (
    DOCX_MIME,
    PDF_MIME,
    ContentExtractor,
    parse_docx,
    parse_html,
    parse_pdf,
)


def _docx_bytes(*paragraphs: str) -> bytes:
    ns = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
    body = "".join(f"<w:p><w:r><w:t>{p}</w:t></w:r></w:p>" for p in paragraphs)
    xml = f'<?xml version="1.0" encoding="UTF-8"?><w:document xmlns:w="{ns}"><w:body>{body}</w:body></w:document>'
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr("word/document.xml", xml)
    return buf.getvalue()


def _response(content: bytes, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.content = content
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


# ── parsers ────────────────────────────────────────────────────────────


class TestParsers:
    def test_html_drops_boilerplate(self) -> None:
        html = b"<html><head><style>p{}</style></head><body><nav>Menu</nav><p>Hello</p><p>World</p><script>x()</script></body></html>"
        text = parse_html(html)
        assert "Hello" in text and "World" in text
        assert "Menu" not in text and "x()" not in text

    def test_docx_paragraphs(self) -> None:
        assert parse_docx(_docx_bytes("First paragraph.", "Second paragraph.")) == (
            "First paragraph.\n\nSecond paragraph."
        )

    def test_corrupt_docx(self) -> None:
        with pytest.raises(ExtractionError, match="DOCX"):
            parse_docx(b"not a zip file")

    def test_pdf_pages_joined(self) -> None:
        pages = [MagicMock(), MagicMock(), MagicMock()]
        pages[0].extract_text.return_value = "Page one."
        pages[1].extract_text.return_value = ""
        pages[2].extract_text.return_value = "Page three."
        with patch("rag_ingest.ingestion.loader.PdfReader") as reader_cls:
            reader_cls.return_value.pages = pages
            assert parse_pdf(b"%PDF-fake") == "Page one.\n\nPage three."

    def test_corrupt_pdf(self) -> None:
        with pytest.raises(ExtractionError, match="PDF"):
            parse_pdf(b"definitely not a pdf")


# ── ContentExtractor ───────────────────────────────────────────────────


class TestContentExtractor:
    def test_local_text_file(self, tmp_path: Path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("plain notes", encoding="utf-8")
        extractor = ContentExtractor(session=MagicMock())

        assert extractor.extract(str(path), "text/plain") == "plain notes"
        assert extractor.extract(path.as_uri(), "text/plain; charset=utf-8") == "plain notes"

    def test_missing_local_file(self, tmp_path: Path) -> None:
        extractor = ContentExtractor(session=MagicMock())
        with pytest.raises(ExtractionError, match="Cannot read"):
            extractor.extract(str(tmp_path / "missing.txt"), "text/plain")

    def test_unsupported_type(self) -> None:
        session = MagicMock()
        extractor = ContentExtractor(session=session)
        with pytest.raises(ExtractionError, match="Unsupported file type"):
            extractor.extract("https://files.example.com/a.png", "image/png")
        session.get.assert_not_called()

    def test_requires_url_and_type(self) -> None:
        with pytest.raises(ExtractionError):
            ContentExtractor(session=MagicMock()).extract("", "text/plain")

    def test_http_download_docx(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(_docx_bytes("Remote paragraph."))
        extractor = ContentExtractor(session=session, timeout=5)

        assert extractor.extract("https://files.example.com/a.docx", DOCX_MIME) == "Remote paragraph."
        session.get.assert_called_once_with("https://files.example.com/a.docx", timeout=5)

    def test_http_retries_then_succeeds(self) -> None:
        sleeps: list[float] = []
        session = MagicMock()
        session.get.side_effect = [requests.ConnectionError("reset"), _response(b"ok text")]
        extractor = ContentExtractor(session=session, max_retries=3, sleep=sleeps.append)

        assert extractor.extract("http://files.example.com/a.txt", "text/plain") == "ok text"
        assert sleeps == [2]

    def test_http_gives_up(self) -> None:
        sleeps: list[float] = []
        session = MagicMock()
        session.get.return_value = _response(b"", status=503)
        extractor = ContentExtractor(session=session, max_retries=3, sleep=sleeps.append)

        with pytest.raises(ExtractionError, match="after 3 attempts") as excinfo:
            extractor.extract("https://files.example.com/a.pdf", PDF_MIME)
        assert isinstance(excinfo.value.__cause__, requests.HTTPError)
        assert session.get.call_count == 3
        assert sleeps == [2, 4]
