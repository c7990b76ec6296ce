"""Shared test fixtures for the patchstream test suite."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import aiosqlite
import pytest

from patchstream.cache import GenerationCache
from patchstream.storage import MemoryStore, SqliteStore

BASE_DOCUMENT = (
    "<!DOCTYPE html>\n"
    "<html><head><style>:root { --brand: #000; }\nbody { margin: 0; }</style></head>"
    '<body><section id="hero">old</section><section id="features">f</section>'
    '<section id="old-cta">cta</section></body></html>'
)


class FakeClock:
    """Settable epoch-millisecond clock."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeByteStream:
    """Scripted response body implementing ByteStreamProtocol."""

    def __init__(self, chunks: list[bytes], *, hold: asyncio.Event | None = None) -> None:
        self._chunks = chunks
        self._hold = hold  # When set, wait on it after the scripted chunks run out
        self.closed = False

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk
        if self._hold is not None:
            await self._hold.wait()

    async def aclose(self) -> None:
        self.closed = True


class FakeOpener:
    """StreamOpenerProtocol returning a prepared FakeByteStream per call."""

    def __init__(self, *streams: FakeByteStream) -> None:
        self.bodies = list(streams)
        self._streams = list(streams)
        self.payloads: list[dict[str, Any]] = []

    async def open(self, payload: dict[str, Any], cancel: asyncio.Event) -> FakeByteStream:
        self.payloads.append(payload)
        return self._streams.pop(0)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def cache(memory_store: MemoryStore, clock: FakeClock) -> GenerationCache:
    return GenerationCache(memory_store, ttl_ms=10_000, max_entries=3, clock=clock)


@pytest.fixture()
async def sqlite_store() -> AsyncIterator[SqliteStore]:
    async with aiosqlite.connect(":memory:") as db:
        store = SqliteStore(db, max_value_bytes=1024)
        await store.init_db()
        yield store


@pytest.fixture()
def base_document() -> str:
    return BASE_DOCUMENT


@pytest.fixture()
def make_opener():
    """Build a FakeOpener; each argument is the chunk list for one stream."""

    def _make(
        *streams: list[str | bytes] | FakeByteStream, hold: asyncio.Event | None = None
    ) -> FakeOpener:
        bodies = [
            chunks
            if isinstance(chunks, FakeByteStream)
            else FakeByteStream(
                [c.encode("utf-8") if isinstance(c, str) else c for c in chunks],
                hold=hold,
            )
            for chunks in streams
        ]
        return FakeOpener(*bodies)

    return _make


@pytest.fixture()
def make_body():
    """Build a single FakeByteStream from text or byte chunks."""

    def _make(chunks: list[str | bytes], hold: asyncio.Event | None = None) -> FakeByteStream:
        return FakeByteStream(
            [c.encode("utf-8") if isinstance(c, str) else c for c in chunks], hold=hold
        )

    return _make
