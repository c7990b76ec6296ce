from __future__ import annotations

from patchstream.models.cache import CacheEntry, CacheStats, GenerationResult, IndexRecord
from patchstream.models.patch import (
    ApplyOutcome,
    ApplyReport,
    InsertAfter,
    InsertBefore,
    OpKind,
    PatchOp,
    Remove,
    Replace,
    ReplaceStyles,
    ReplaceVars,
)

__all__ = [
    # patch
    "OpKind",
    "PatchOp",
    "ReplaceVars",
    "ReplaceStyles",
    "Replace",
    "InsertAfter",
    "InsertBefore",
    "Remove",
    "ApplyOutcome",
    "ApplyReport",
    # cache
    "GenerationResult",
    "CacheEntry",
    "IndexRecord",
    "CacheStats",
]
