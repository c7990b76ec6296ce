"""Application state container.

AppState is created once per process by the entry point and passed to
whatever needs the shared collaborators. Nothing here is a module-level
singleton.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite
    import httpx

    from patchstream.cache import GenerationCache
    from patchstream.config import Settings
    from patchstream.protocols import StreamOpenerProtocol


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    http_client: httpx.AsyncClient | None = None
    opener: StreamOpenerProtocol | None = None
    cache: GenerationCache | None = None
    db: aiosqlite.Connection | None = None
