# edutest/services/pdf_renderer.py
"""
PDF rendering collaborator: fetches a document over HTTP and exposes its
page count and single pages.

A missing document (HTTP 404) raises DocumentNotFoundError, every other
fetch or parse problem raises DocumentLoadError, so callers can tell
"not there" apart from "failed to load".
"""
import io
import logging

import httpx
from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PyPdfError

from edutest.core.config import settings
from edutest.core.exceptions import MissingResourceError, TransientLoadError

logger = logging.getLogger(__name__)


class DocumentLoadError(TransientLoadError):
    pass


class DocumentNotFoundError(MissingResourceError):
    pass


class PdfDocument:
    def __init__(self, data: bytes):
        self._reader = PdfReader(io.BytesIO(data))
        self.page_count = len(self._reader.pages)

    def render_page(self, page_number: int) -> bytes:
        """Return page ``page_number`` (1-based) as a standalone one-page PDF."""
        if not 1 <= page_number <= self.page_count:
            raise ValueError(f"page {page_number} out of range 1..{self.page_count}")
        writer = PdfWriter()
        writer.add_page(self._reader.pages[page_number - 1])
        buf = io.BytesIO()
        writer.write(buf)
        return buf.getvalue()


class PdfRenderer:
    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout if timeout is not None else settings.DOCUMENT_FETCH_TIMEOUT_SECONDS
        self._transport = transport

    async def load(self, url: str) -> PdfDocument:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self._transport
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise DocumentLoadError(f"Could not fetch {url}: {e}") from e

        if response.status_code == 404:
            raise DocumentNotFoundError(f"Document not found: {url}")
        if response.status_code >= 400:
            raise DocumentLoadError(f"Fetching {url} returned HTTP {response.status_code}")

        try:
            document = PdfDocument(response.content)
        except (PyPdfError, ValueError) as e:
            raise DocumentLoadError(f"Invalid PDF at {url}: {e}") from e

        if document.page_count < 1:
            raise DocumentLoadError(f"PDF at {url} has no pages")

        logger.info(f"Loaded PDF {url} with {document.page_count} pages")
        return document
