from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class OpKind(StrEnum):
    REPLACE_VARS = "REPLACE_VARS"
    REPLACE_STYLES = "REPLACE_STYLES"
    REPLACE = "REPLACE"
    INSERT_AFTER = "INSERT_AFTER"
    INSERT_BEFORE = "INSERT_BEFORE"
    REMOVE = "REMOVE"


class _Op(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: int  # Offset of the opening marker in the stream text
    end: int  # Offset just past the closing marker


class ReplaceVars(_Op):
    """Swap the declarations of the :root custom-property block."""

    kind: Literal[OpKind.REPLACE_VARS] = OpKind.REPLACE_VARS
    content: str


class ReplaceStyles(_Op):
    """Replace every <style> block in the head."""

    kind: Literal[OpKind.REPLACE_STYLES] = OpKind.REPLACE_STYLES
    content: str


class Replace(_Op):
    kind: Literal[OpKind.REPLACE] = OpKind.REPLACE
    selector: str
    content: str


class InsertAfter(_Op):
    kind: Literal[OpKind.INSERT_AFTER] = OpKind.INSERT_AFTER
    selector: str
    content: str


class InsertBefore(_Op):
    kind: Literal[OpKind.INSERT_BEFORE] = OpKind.INSERT_BEFORE
    selector: str
    content: str


class Remove(_Op):
    kind: Literal[OpKind.REMOVE] = OpKind.REMOVE
    selector: str


PatchOp = Annotated[
    ReplaceVars | ReplaceStyles | Replace | InsertAfter | InsertBefore | Remove,
    Field(discriminator="kind"),
]


class ApplyOutcome(StrEnum):
    APPLIED = "applied"
    SKIPPED_NO_MATCH = "skipped_no_match"
    SKIPPED_EMPTY = "skipped_empty"
    FAILED = "failed"


@dataclass
class ApplyReport:
    """Result of applying one batch of operations to a document.

    ``document`` is the patched document, or the untouched base document when
    any operation in the batch failed.
    """

    document: str
    outcomes: list[ApplyOutcome] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return ApplyOutcome.FAILED in self.outcomes

    @property
    def applied(self) -> int:
        return self.outcomes.count(ApplyOutcome.APPLIED)
