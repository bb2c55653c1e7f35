"""Loads the test PDF for a session with bounded automatic retries."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Protocol

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from edutest.core.config import settings
from edutest.core.exceptions import MissingResourceError, TransientLoadError
from edutest.services.pdf_renderer import DocumentLoadError, PdfRenderer

logger = logging.getLogger(__name__)


class DocumentState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"
    FALLBACK_SHOWN = "fallback_shown"
    UNAVAILABLE = "unavailable"


class RenderedDocument(Protocol):
    page_count: int

    def render_page(self, page_number: int) -> bytes:
        ...


class DocumentRenderer(Protocol):
    async def load(self, url: str) -> RenderedDocument:
        ...


class DocumentLoader:
    """
    Idle -> Loading -> Loaded | Failed; Failed -> Loading is retried
    automatically ``max_retries`` times with a fixed backoff, after which the
    loader parks in FALLBACK_SHOWN until ``retry()`` is called.

    A missing or placeholder URL, or a document the renderer reports as not
    found, puts the loader in UNAVAILABLE without any retry.
    """

    def __init__(
        self,
        url: str | None,
        renderer: DocumentRenderer | None = None,
        *,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        placeholder_url: str | None = None,
    ) -> None:
        self.url = url
        self.renderer = renderer or PdfRenderer()
        self.max_retries = settings.DOCUMENT_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = (
            settings.DOCUMENT_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self.placeholder_url = placeholder_url or settings.PLACEHOLDER_PDF_URL
        self._sleep = sleep
        self._lock = asyncio.Lock()

        self.state = DocumentState.IDLE
        self.document: RenderedDocument | None = None
        self.current_page: int | None = None
        self.attempts = 0
        self.last_error: Exception | None = None

    @property
    def page_count(self) -> int | None:
        return self.document.page_count if self.document is not None else None

    @property
    def has_document(self) -> bool:
        return bool(self.url) and self.url != self.placeholder_url

    @property
    def message(self) -> str | None:
        if self.state == DocumentState.UNAVAILABLE:
            return "The test document is not yet available."
        if self.state == DocumentState.FALLBACK_SHOWN:
            reason = str(self.last_error) if self.last_error else "unknown error"
            return f"Failed to load the test document: {reason}"
        if self.state == DocumentState.FAILED:
            return f"Loading failed, retrying (attempt {self.attempts} of {self.max_retries + 1})"
        return None

    async def load(self) -> DocumentState:
        async with self._lock:
            if self.state in (DocumentState.LOADED, DocumentState.FALLBACK_SHOWN):
                return self.state
            return await self._load_locked()

    async def retry(self) -> DocumentState:
        """
        Manual retry from the fallback (or unavailable) state. Waits for a
        load already in flight, then always starts a fresh round of attempts.
        """
        async with self._lock:
            self._reset(self.url, keep_document=True)
            return await self._load_locked()

    async def set_url(self, url: str | None) -> None:
        """Point the loader at another document; the next load fetches it."""
        async with self._lock:
            self._reset(url)

    def open_externally(self) -> str | None:
        return self.url if self.has_document else None

    def _reset(self, url: str | None, *, keep_document: bool = False) -> None:
        self.url = url
        self.state = DocumentState.IDLE
        if not keep_document:
            self.document = None
            self.current_page = None
        self.attempts = 0
        self.last_error = None

    async def _load_locked(self) -> DocumentState:
        # caller holds self._lock
        if not self.has_document:
            self.state = DocumentState.UNAVAILABLE
            logger.info(f"No document attached (url={self.url!r})")
            return self.state

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_fixed(self.backoff_seconds),
            retry=retry_if_exception_type(TransientLoadError),
            before_sleep=self._before_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._load_once()
        except MissingResourceError as e:
            self.last_error = e
            self.state = DocumentState.UNAVAILABLE
            logger.warning(f"Document {self.url} is unavailable: {e}")
        except TransientLoadError as e:
            self.last_error = e
            self.state = DocumentState.FALLBACK_SHOWN
            logger.error(
                f"Giving up on {self.url} after {self.attempts} attempts: {e}"
            )
        return self.state

    async def _load_once(self) -> None:
        self.state = DocumentState.LOADING
        self.attempts += 1
        try:
            document = await self.renderer.load(self.url)
        except (TransientLoadError, MissingResourceError) as e:
            self.state = DocumentState.FAILED
            self.last_error = e
            logger.warning(f"Loading {self.url} failed (attempt {self.attempts}): {e}")
            raise
        except Exception as e:
            self.state = DocumentState.FAILED
            self.last_error = e
            logger.warning(
                f"Loading {self.url} failed (attempt {self.attempts}): {e}", exc_info=True
            )
            raise DocumentLoadError(str(e)) from e

        self.document = document
        self.current_page = 1
        self.last_error = None
        self.state = DocumentState.LOADED
        logger.info(f"Loaded {self.url} ({document.page_count} pages)")

    def _before_retry(self, retry_state: RetryCallState) -> None:
        logger.info(
            f"Retrying {self.url} in {self.backoff_seconds}s "
            f"(retry {retry_state.attempt_number} of {self.max_retries})"
        )

    # Navigation is clamped to [1, page_count]; anything else is a no-op.

    def go_to_page(self, page_number: int) -> int | None:
        if self.state != DocumentState.LOADED or self.document is None:
            return self.current_page
        if 1 <= page_number <= self.document.page_count:
            self.current_page = page_number
        return self.current_page

    def next_page(self) -> int | None:
        if self.current_page is None:
            return None
        return self.go_to_page(self.current_page + 1)

    def previous_page(self) -> int | None:
        if self.current_page is None:
            return None
        return self.go_to_page(self.current_page - 1)

    def render_current_page(self) -> bytes:
        if self.state != DocumentState.LOADED or self.document is None:
            raise MissingResourceError("Document is not loaded")
        return self.document.render_page(self.current_page)
