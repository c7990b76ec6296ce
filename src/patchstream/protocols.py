"""Protocol interfaces for swappable components.

The cache, the stream consumer and the generation session reference these
protocols, not the concrete implementations. This allows:
- Tests to use lightweight in-memory implementations
- Other durable stores or transports to be swapped in without touching callers
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncIterator


class StorageProtocol(Protocol):
    """Durable, size-bounded string key/value store behind the generation cache.

    Implementations may raise on failure; the cache catches and logs.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class ByteStreamProtocol(Protocol):
    """An open response body. ``httpx.Response`` opened with ``stream=True`` fits."""

    def aiter_bytes(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


class StreamOpenerProtocol(Protocol):
    """Opens the generator's byte stream for a request payload."""

    async def open(self, payload: dict[str, Any], cancel: asyncio.Event) -> ByteStreamProtocol: ...


class TokenProvider(Protocol):
    """Returns the current session's bearer token, if signed in."""

    async def __call__(self) -> str | None: ...
