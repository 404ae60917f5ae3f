"""Content extraction — turn a remote or local file into plain text.

Supported MIME types:

* ``application/pdf`` — via ``pypdf``
* ``application/vnd.openxmlformats-officedocument.wordprocessingml.document``
  — paragraphs read straight from ``word/document.xml``
* ``text/html`` — visible text via BeautifulSoup
* any other ``text/*`` — decoded as UTF-8

Sources are ``http(s)://`` URLs (fetched with ``requests``, retried on
transient errors), ``file://`` URLs, or plain filesystem paths.
"""

from __future__ import annotations

import io
import logging
import time
import zipfile
from collections.abc import Callable
from pathlib import Path
from urllib.parse import unquote, urlparse
from xml.etree import ElementTree

import requests
from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from rag_ingest.errors import ExtractionError

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
HTML_MIME = "text/html"

_WORD_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"
_BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]


def parse_pdf(data: bytes) -> str:
    """Extract text from every page of a PDF, pages separated by blank lines."""
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [(page.extract_text() or "").strip() for page in reader.pages]
    except (PyPdfError, ValueError) as exc:
        raise ExtractionError(f"Failed to parse PDF: {exc}") from exc
    return "\n\n".join(page for page in pages if page)


def parse_docx(data: bytes) -> str:
    """Extract paragraph text from a DOCX package."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            xml = archive.read("word/document.xml")
        root = ElementTree.fromstring(xml)
    except (zipfile.BadZipFile, KeyError, ElementTree.ParseError) as exc:
        raise ExtractionError(f"Failed to parse DOCX: {exc}") from exc

    paragraphs = []
    for para in root.iter(f"{_WORD_NS}p"):
        text = "".join(node.text or "" for node in para.iter(f"{_WORD_NS}t"))
        if text.strip():
            paragraphs.append(text)
    return "\n\n".join(paragraphs)


def parse_html(data: bytes) -> str:
    """Visible text of an HTML page with boiler-plate tags removed."""
    soup = BeautifulSoup(data, "html.parser")
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    return soup.get_text(separator="\n", strip=True)


def parse_text(data: bytes) -> str:
    """Decode plain text as UTF-8, replacing undecodable bytes."""
    return data.decode("utf-8", errors="replace")


def _parser_for(mime_type: str) -> Callable[[bytes], str]:
    mime = mime_type.split(";", 1)[0].strip().lower()
    if mime == PDF_MIME:
        return parse_pdf
    if mime == DOCX_MIME:
        return parse_docx
    if mime == HTML_MIME:
        return parse_html
    if mime.startswith("text/"):
        return parse_text
    raise ExtractionError(f"Unsupported file type: {mime_type!r}")


class ContentExtractor:
    """Fetch a source and return its plain text.

    Parameters
    ----------
    session:
        ``requests`` session used for HTTP sources.  A new one is created
        when omitted.
    timeout:
        Per-request timeout in seconds.
    max_retries:
        Attempts for transient HTTP errors; the wait doubles each time.
    sleep:
        Injected for tests; defaults to :func:`time.sleep`.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        timeout: int = 60,
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._sleep = sleep

    def extract(self, url: str, mime_type: str) -> str:
        """Return the text of *url*, raising :class:`ExtractionError` on failure.

        The result may be empty or whitespace-only; callers decide whether
        that counts as a failure.
        """
        if not url or not mime_type:
            raise ExtractionError("Source URL and MIME type are both required")
        parser = _parser_for(mime_type)
        data = self._read(url)
        text = parser(data)
        logger.debug("Extracted %d characters from %s", len(text), url)
        return text

    def close(self) -> None:
        self._session.close()

    # -- internals ------------------------------------------------------------

    def _read(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https"):
            return self._download(url)
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(url)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ExtractionError(f"Cannot read {path}: {exc}") from exc

    def _download(self, url: str) -> bytes:
        last_exc: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self._session.get(url, timeout=self.timeout)
                resp.raise_for_status()
                return resp.content
            except requests.RequestException as exc:
                last_exc = exc
                if attempt < self.max_retries:
                    wait = 2**attempt
                    logger.warning(
                        "Retry %d/%d for %s (wait %ds): %s", attempt, self.max_retries, url, wait, exc
                    )
                    self._sleep(wait)
        raise ExtractionError(f"Failed to fetch {url} after {self.max_retries} attempts") from last_exc
