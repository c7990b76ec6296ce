"""Generation session: one in-flight stream, rendered incrementally.

Ties the pieces together for a caller that shows the document while it is
being generated:

- checks the generation cache before opening a stream,
- cancels any in-flight stream before starting another one,
- shows full-document responses verbatim and routes patch streams through an
  ``IncrementalApplier`` on top of the current document,
- caches finished generations and invalidates the originating entry after a
  refinement.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from contextlib import aclosing
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from patchstream.applier import IncrementalApplier
from patchstream.cache import derive_cache_key, should_use_cache
from patchstream.errors import ErrorCode, GenerationAbortedError, PatchStreamError
from patchstream.fetcher import build_payload
from patchstream.models.cache import GenerationResult
from patchstream.parser import PATCH_START_MARKER, is_patch_stream
from patchstream.stream import StreamConsumer, StreamProgress

if TYPE_CHECKING:
    from patchstream.cache import GenerationCache
    from patchstream.protocols import StreamOpenerProtocol

log = structlog.get_logger()


class GenerationStatus(StrEnum):
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class GenerationOutcome:
    status: GenerationStatus
    document: str  # Best snapshot available; partial when aborted
    files: dict[str, str] | None = None
    from_cache: bool = False
    patched: bool = False


def _mode_undecided(text: str) -> bool:
    """True while the buffer may still turn out to be a patch stream."""
    if is_patch_stream(text):
        return False
    stripped = text.lstrip()
    return PATCH_START_MARKER.startswith(stripped) or stripped.startswith(PATCH_START_MARKER)


class GenerationSession:
    """Runs generations and refinements for one interactive session."""

    def __init__(
        self,
        opener: StreamOpenerProtocol,
        cache: GenerationCache | None = None,
        *,
        on_document: Callable[[str], Any] | None = None,
        on_progress: Callable[[StreamProgress], Any] | None = None,
    ) -> None:
        self._opener = opener
        self._cache = cache
        self._on_document = on_document
        self._on_progress = on_progress
        self._cancel: asyncio.Event | None = None
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> None:
        """Signal the in-flight stream, if any, to stop."""
        if self._cancel is not None:
            self._cancel.set()

    def _emit(self, document: str) -> None:
        if self._on_document is not None:
            self._on_document(document)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        selections: Mapping[str, Any] | None = None,
        persistent_options: Mapping[str, Any] | None = None,
        *,
        use_cache: bool = True,
    ) -> GenerationOutcome:
        """Generate a new document, serving it from cache when possible."""
        if not prompt.strip():
            raise PatchStreamError(
                code=ErrorCode.INVALID_INPUT,
                message="Prompt is empty.",
                suggestion="Describe the site to generate.",
                recoverable=False,
            )

        cache = self._cache if use_cache and should_use_cache(is_refinement=False) else None
        key = derive_cache_key(prompt, selections, persistent_options)

        if cache is not None:
            cached = await cache.get(key)
            if cached is not None:
                self._emit(cached.document)
                return GenerationOutcome(
                    status=GenerationStatus.COMPLETED,
                    document=cached.document,
                    files=cached.files,
                    from_cache=True,
                )

        payload = build_payload(prompt, selections, persistent_options)
        outcome = await self._start(payload, base_document=None)

        if cache is not None and outcome.status is GenerationStatus.COMPLETED:
            if is_patch_stream(outcome.document):
                # Unapplied patch markup is not a finished document.
                log.warning("cache_skipped_patch_stream", key=key)
            else:
                await cache.set(
                    key, GenerationResult(document=outcome.document, files=outcome.files)
                )
        return outcome

    async def refine(
        self,
        instruction: str,
        base_document: str,
        *,
        original_prompt: str,
        selections: Mapping[str, Any] | None = None,
        persistent_options: Mapping[str, Any] | None = None,
    ) -> GenerationOutcome:
        """Refine ``base_document``; the generator may answer with patches or a full document.

        Never served from cache. On success the cache entry of the original
        request is dropped, since it no longer reflects what the user sees.
        """
        if not instruction.strip():
            raise PatchStreamError(
                code=ErrorCode.INVALID_INPUT,
                message="Refinement instruction is empty.",
                suggestion="Describe what to change.",
                recoverable=False,
            )

        payload = build_payload(
            instruction,
            selections,
            persistent_options,
            is_refinement=True,
            previous_html=base_document,
        )
        outcome = await self._start(payload, base_document=base_document)

        if self._cache is not None and outcome.status is GenerationStatus.COMPLETED:
            await self._cache.invalidate(
                derive_cache_key(original_prompt, selections, persistent_options)
            )
        return outcome

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _start(self, payload: dict[str, Any], base_document: str | None) -> GenerationOutcome:
        if self._cancel is not None and not self._cancel.is_set():
            log.info("generation_cancelled_previous")
            self._cancel.set()

        cancel = asyncio.Event()
        self._cancel = cancel
        # Wait for the previous run to unwind so only one writer exists.
        async with self._lock:
            try:
                return await self._run(payload, base_document, cancel)
            finally:
                if self._cancel is cancel:
                    self._cancel = None

    async def _run(
        self, payload: dict[str, Any], base_document: str | None, cancel: asyncio.Event
    ) -> GenerationOutcome:
        if cancel.is_set():
            return GenerationOutcome(status=GenerationStatus.ABORTED, document=base_document or "")

        applier: IncrementalApplier | None = None
        consumer: StreamConsumer | None = None
        try:
            consumer = await StreamConsumer.open(
                self._opener, payload, cancel, on_progress=self._on_progress
            )
            async with aclosing(consumer.chunks()) as chunks:
                async for _chunk in chunks:
                    text = consumer.get_full_text()
                    if applier is None and base_document is not None and is_patch_stream(text):
                        applier = IncrementalApplier(base_document)
                    if applier is not None:
                        update = applier.update(text)
                        if update.applied_new:
                            self._emit(update.document)
                    elif not _mode_undecided(text):
                        self._emit(text)
        except GenerationAbortedError:
            if applier is not None:
                snapshot = applier.current_document
            elif consumer is not None and consumer.get_full_text():
                snapshot = consumer.get_full_text()
            else:
                snapshot = base_document or ""
            log.info("generation_aborted", patched=applier is not None)
            return GenerationOutcome(
                status=GenerationStatus.ABORTED,
                document=snapshot,
                patched=applier is not None,
            )

        text = consumer.get_full_text()
        if not text.strip():
            raise PatchStreamError(
                code=ErrorCode.EMPTY_RESPONSE_BODY,
                message="Generator returned an empty response.",
                suggestion="Something went wrong while generating. Try again.",
                recoverable=True,
            )

        if applier is not None:
            document = applier.finalize(text)
            self._emit(document)
            log.info("generation_complete", mode="patch", ops=applier.applied_count)
            return GenerationOutcome(
                status=GenerationStatus.COMPLETED, document=document, patched=True
            )

        if is_patch_stream(text):
            # Patches without a document to apply them to: nothing sensible to show.
            log.warning("patch_stream_without_base")

        self._emit(text)
        log.info("generation_complete", mode="full", chars=len(text))
        return GenerationOutcome(
            status=GenerationStatus.COMPLETED, document=text, files=consumer.get_files()
        )
