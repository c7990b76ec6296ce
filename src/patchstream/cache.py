"""Two-tier cache of finished generations.

Entries live in an in-process dict (fast path) and in an injected durable
store. A separate index record lists ``{key, timestamp}`` for every live entry
so eviction never has to scan the store.

All durable-store errors are caught inside ``GenerationCache`` and degrade
gracefully: read failures are treated as cache misses, write failures are
logged and ignored. The in-process tier stays authoritative for the rest of
the process even when the durable store is unusable. Errors are logged with
``exc_info=True`` so they remain observable.
"""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog
from pydantic import TypeAdapter

from patchstream.errors import StoreFullError
from patchstream.models.cache import CacheEntry, CacheStats, GenerationResult, IndexRecord

if TYPE_CHECKING:
    from patchstream.protocols import StorageProtocol

log = structlog.get_logger()

CACHE_KEY_PREFIX = "gen_cache_"
CACHE_INDEX_KEY = "gen_cache_index"
DEFAULT_MAX_ENTRIES = 20
DEFAULT_TTL_MS = 7 * 24 * 60 * 60 * 1000

# ValueError covers pydantic ValidationError and json decode errors on corrupt records.
_STORE_ERRORS = (aiosqlite.Error, StoreFullError, OSError, ValueError)

_INDEX_ADAPTER = TypeAdapter(list[IndexRecord])


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------


def _is_set(value: Any) -> bool:
    if value is None or value == "":
        return False
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return False
    return True


def derive_cache_key(
    prompt: str,
    selections: Mapping[str, Any] | None = None,
    persistent_options: Mapping[str, Any] | None = None,
) -> str:
    """Reduce a generation request to a stable cache key.

    The prompt is trimmed and lowercased, unset selections are dropped, and only
    the brand name and business description are taken from the persistent
    options. Requests that differ only in whitespace, case or empty fields
    share a key.
    """
    normalized_prompt = prompt.strip().lower()

    relevant_selections = {k: v for k, v in (selections or {}).items() if _is_set(v)}

    options = persistent_options or {}
    relevant_persistent: dict[str, Any] = {}
    brand_name = (options.get("branding") or {}).get("brandName")
    if brand_name:
        relevant_persistent["brandName"] = brand_name
    business_desc = (options.get("business") or {}).get("description")
    if business_desc:
        relevant_persistent["businessDesc"] = business_desc

    payload = json.dumps(
        {"p": normalized_prompt, "s": relevant_selections, "o": relevant_persistent},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]
    return CACHE_KEY_PREFIX + digest


def should_use_cache(is_refinement: bool = False) -> bool:
    """Refinements depend on the current document and are never served from cache."""
    return not is_refinement


# ---------------------------------------------------------------------------
# Cache service
# ---------------------------------------------------------------------------


class GenerationCache:
    """Fast-path dict plus durable store, bounded by TTL and entry count.

    Eviction removes the globally oldest entries by write timestamp; reads do
    not refresh an entry's position.
    """

    def __init__(
        self,
        store: StorageProtocol,
        *,
        ttl_ms: int = DEFAULT_TTL_MS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._ttl_ms = ttl_ms
        self._max_entries = max_entries
        self._clock = clock
        self._memory: dict[str, CacheEntry] = {}
        self._index: list[IndexRecord] | None = None

    def _is_fresh(self, timestamp: int) -> bool:
        return self._clock() - timestamp < self._ttl_ms

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    async def _load_index(self) -> list[IndexRecord]:
        if self._index is not None:
            return self._index
        try:
            raw = await self._store.get(CACHE_INDEX_KEY)
            self._index = _INDEX_ADAPTER.validate_json(raw) if raw else []
        except _STORE_ERRORS:
            log.warning("cache_read_error", key=CACHE_INDEX_KEY, exc_info=True)
            self._index = []
        return self._index

    async def _save_index(self) -> None:
        index = await self._load_index()
        try:
            await self._store.set(CACHE_INDEX_KEY, _INDEX_ADAPTER.dump_json(index).decode("utf-8"))
        except _STORE_ERRORS:
            log.warning("cache_write_error", key=CACHE_INDEX_KEY, exc_info=True)

    async def list_index(self) -> list[IndexRecord]:
        """Snapshot of the index, oldest first."""
        index = await self._load_index()
        return sorted(index, key=lambda record: record.timestamp)

    async def _purge(self, key: str) -> None:
        """Drop ``key`` from every tier and the index."""
        self._memory.pop(key, None)
        index = await self._load_index()
        index[:] = [record for record in index if record.key != key]
        try:
            await self._store.remove(key)
        except _STORE_ERRORS:
            log.warning("cache_write_error", key=key, exc_info=True)
        await self._save_index()

    async def _evict(self) -> None:
        index = await self._load_index()
        if len(index) <= self._max_entries:
            return

        index.sort(key=lambda record: record.timestamp)
        overflow = len(index) - self._max_entries
        evicted, index[:] = index[:overflow], index[overflow:]

        for record in evicted:
            self._memory.pop(record.key, None)
            try:
                await self._store.remove(record.key)
            except _STORE_ERRORS:
                log.warning("cache_write_error", key=record.key, exc_info=True)
        log.info("cache_evicted", keys=[record.key for record in evicted])

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> GenerationResult | None:
        """Return the cached result for ``key``, or ``None`` on miss or expiry."""
        entry = self._memory.get(key)
        if entry is not None:
            if self._is_fresh(entry.timestamp):
                log.info("cache_hit", key=key, tier="memory")
                return entry.to_result()
            log.info("cache_expired", key=key, age_ms=self._clock() - entry.timestamp)
            await self._purge(key)
            return None

        try:
            raw = await self._store.get(key)
            if raw is not None:
                entry = CacheEntry.model_validate_json(raw)
                if self._is_fresh(entry.timestamp):
                    self._memory[key] = entry
                    log.info("cache_hit", key=key, tier="store")
                    return entry.to_result()
                log.info("cache_expired", key=key, age_ms=self._clock() - entry.timestamp)
                await self._purge(key)
                return None
        except _STORE_ERRORS:
            log.warning("cache_read_error", key=key, exc_info=True)

        log.info("cache_miss", key=key)
        return None

    async def set(self, key: str, result: GenerationResult) -> None:
        """Store ``result`` under ``key``, replacing any previous entry. Non-fatal on failure."""
        entry = CacheEntry(
            timestamp=self._clock(),
            document=result.document,
            files=result.files,
            tokens_used=result.tokens_used,
        )
        self._memory[key] = entry

        index = await self._load_index()
        for record in index:
            if record.key == key:
                record.timestamp = entry.timestamp
                break
        else:
            index.append(IndexRecord(key=key, timestamp=entry.timestamp))

        try:
            await self._store.set(key, entry.model_dump_json())
        except _STORE_ERRORS:
            log.warning("cache_write_error", key=key, exc_info=True)

        await self._evict()
        await self._save_index()
        log.info("cache_stored", key=key, entries=len(index))

    async def invalidate(self, key: str) -> None:
        """Remove ``key``; used when a refinement supersedes the cached document."""
        await self._purge(key)
        log.info("cache_invalidated", key=key)

    async def clear(self) -> None:
        """Remove every cached generation and the index."""
        index = await self._load_index()
        for record in index:
            try:
                await self._store.remove(record.key)
            except _STORE_ERRORS:
                log.warning("cache_write_error", key=record.key, exc_info=True)
        index.clear()
        self._memory.clear()
        try:
            await self._store.remove(CACHE_INDEX_KEY)
        except _STORE_ERRORS:
            log.warning("cache_write_error", key=CACHE_INDEX_KEY, exc_info=True)
        log.info("cache_cleared")

    async def stats(self) -> CacheStats:
        index = await self._load_index()
        return CacheStats(
            total_entries=len(index),
            valid_entries=sum(1 for record in index if self._is_fresh(record.timestamp)),
            memory_entries=len(self._memory),
            max_size=self._max_entries,
        )
