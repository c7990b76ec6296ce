from __future__ import annotations

from pydantic import BaseModel


class GenerationResult(BaseModel):
    """A finished generation as handed to the cache."""

    document: str
    files: dict[str, str] | None = None  # Auxiliary documents of a multi-page site
    tokens_used: int | None = None


class CacheEntry(BaseModel):
    """Persisted cache record for one normalized request."""

    timestamp: int  # Epoch milliseconds at write time
    document: str
    files: dict[str, str] | None = None
    tokens_used: int | None = None

    def to_result(self) -> GenerationResult:
        return GenerationResult(
            document=self.document,
            files=self.files,
            tokens_used=self.tokens_used,
        )


class IndexRecord(BaseModel):
    """One row of the cache index: which key was written when."""

    key: str
    timestamp: int


class CacheStats(BaseModel):
    total_entries: int
    valid_entries: int
    memory_entries: int
    max_size: int
