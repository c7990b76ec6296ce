"""Streaming consumer for generator responses.

Reads the response body chunk by chunk, decodes it as UTF-8, and keeps the
full accumulated text. Everything derived from the stream (lifecycle phase,
multi-document split) is recomputed from the whole buffer on every chunk, so
markers split across chunk boundaries are handled without special cases.
"""

from __future__ import annotations

import asyncio
import codecs
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from patchstream.errors import GenerationAbortedError

if TYPE_CHECKING:
    from patchstream.protocols import ByteStreamProtocol, StreamOpenerProtocol

log = structlog.get_logger()

T = TypeVar("T")

# Handles both <!-- FILE: about.html --> and <!-- ===== FILE: about.html ===== -->
FILE_MARKER_RE = re.compile(r"<!--\s*(?:=+\s*)?FILE:\s*(\S+\.html)\s*(?:=+\s*)?-->", re.IGNORECASE)

_PAGE_NAMES = {
    "index.html": "Home",
    "about.html": "About",
    "services.html": "Services",
    "contact.html": "Contact",
    "products.html": "Products",
    "product-detail.html": "Product Detail",
    "cart.html": "Cart",
    "blog.html": "Blog",
    "post.html": "Blog Post",
    "dashboard.html": "Dashboard",
    "settings.html": "Settings",
    "getting-started.html": "Getting Started",
    "api-reference.html": "API Reference",
    "examples.html": "Examples",
}


class Phase(StrEnum):
    HEAD = "head"
    BODY = "body"
    COMPLETE = "complete"


@dataclass(frozen=True)
class StreamProgress:
    phase: Phase
    content: str  # Full accumulated text
    files: dict[str, str] | None


def detect_phase(text: str, current: Phase = Phase.HEAD) -> Phase:
    """Advance the coarse phase from structural markers; never moves backwards."""
    if current is Phase.COMPLETE or "</body>" in text:
        return Phase.COMPLETE
    if "<body" in text:
        return Phase.BODY
    return current


def split_documents(text: str) -> dict[str, str] | None:
    """Split text carrying ``<!-- FILE: name.html -->`` markers into named documents.

    Returns ``None`` when there is no marker or no file has content yet.
    """
    if not text:
        return None

    # With one capture group: [preamble, name, content, name, content, ...]
    parts = FILE_MARKER_RE.split(text)
    if len(parts) <= 1:
        return None

    files: dict[str, str] = {}
    for i in range(1, len(parts), 2):
        filename = parts[i].strip()
        content = parts[i + 1].strip() if i + 1 < len(parts) else ""
        if filename and content:
            files[filename] = content
    return files or None


def page_display_name(filename: str) -> str:
    """Human label for a page file: ``"about.html"`` → ``"About"``."""
    if filename in _PAGE_NAMES:
        return _PAGE_NAMES[filename]
    return filename.replace(".html", "").replace("-", " ")


async def until_cancelled(awaitable: Awaitable[T], cancel: asyncio.Event) -> T:
    """Await ``awaitable`` unless ``cancel`` fires first.

    Raises GenerationAbortedError if the signal wins; the pending awaitable is
    cancelled.
    """
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
    if task.cancelled():
        raise GenerationAbortedError()
    return task.result()


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return None


class StreamConsumer:
    """Accumulates one generator response and tracks what it contains.

    Create with ``await StreamConsumer.open(...)``; transport failures are
    raised there. Then iterate ``chunks()`` exactly once; it is the only thing
    that advances the read. Setting the cancel event stops the read at the
    next chunk boundary (or while waiting for one) with
    GenerationAbortedError, and the body is released either way.
    """

    def __init__(
        self,
        body: ByteStreamProtocol,
        cancel: asyncio.Event,
        *,
        on_chunk: Callable[[str], Any] | None = None,
        on_progress: Callable[[StreamProgress], Any] | None = None,
    ) -> None:
        self._body = body
        self._cancel = cancel
        self._on_chunk = on_chunk
        self._on_progress = on_progress
        self._released = False
        self.reset()

    @classmethod
    async def open(
        cls,
        opener: StreamOpenerProtocol,
        payload: dict[str, Any],
        cancel: asyncio.Event,
        *,
        on_chunk: Callable[[str], Any] | None = None,
        on_progress: Callable[[StreamProgress], Any] | None = None,
    ) -> StreamConsumer:
        body = await opener.open(payload, cancel)
        return cls(body, cancel, on_chunk=on_chunk, on_progress=on_progress)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def completed(self) -> bool:
        """True once the body was read to the end without cancellation."""
        return self._completed

    def get_full_text(self) -> str:
        return self._text

    def get_files(self) -> dict[str, str] | None:
        self._update_files()
        return self._files

    def is_multi_document(self) -> bool:
        files = self.get_files()
        return files is not None and len(files) > 1

    def reset(self) -> None:
        """Clear accumulated state."""
        self._text = ""
        self._files: dict[str, str] | None = None
        self._phase = Phase.HEAD
        self._completed = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _update_files(self) -> None:
        files = split_documents(self._text)
        # Keep the last good split while a new marker is still arriving.
        if files is not None:
            self._files = files

    def _ingest(self, chunk: str) -> None:
        self._text += chunk
        self._phase = detect_phase(self._text, self._phase)
        self._update_files()

        if self._on_chunk is not None:
            self._on_chunk(chunk)
        if self._on_progress is not None:
            self._on_progress(StreamProgress(phase=self._phase, content=self._text, files=self._files))

    async def chunks(self) -> AsyncIterator[str]:
        """Yield decoded text chunks as they arrive."""
        if self._released:
            raise RuntimeError("stream already consumed; open a new StreamConsumer")
        self._released = True

        iterator = aiter(self._body.aiter_bytes())
        try:
            while True:
                if self._cancel.is_set():
                    raise GenerationAbortedError()
                data = await until_cancelled(_next_chunk(iterator), self._cancel)
                if data is None:
                    break
                text = self._decoder.decode(data)
                if not text:
                    continue  # Partial multi-byte sequence
                self._ingest(text)
                log.debug("stream_chunk", chars=len(text), total_chars=len(self._text))
                yield text

            tail = self._decoder.decode(b"", final=True)
            if tail:
                self._ingest(tail)
                yield tail
            self._completed = True
            log.info("stream_complete", total_chars=len(self._text), phase=self._phase)
        except GenerationAbortedError:
            log.info("stream_aborted", total_chars=len(self._text))
            raise
        finally:
            await self._body.aclose()
