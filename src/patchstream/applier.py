"""Patch application engine and the incremental applier used while streaming.

``apply_operations`` never raises: if the document cannot be parsed or any
operation in the batch fails, the base document is returned untouched and the
failure is logged. A single malformed operation must not leave a half-patched
document behind.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import NamedTuple

import structlog
from bs4 import Tag

from patchstream.document import DocumentTree, parse_fragment
from patchstream.models.patch import (
    ApplyOutcome,
    ApplyReport,
    InsertAfter,
    InsertBefore,
    PatchOp,
    Remove,
    Replace,
    ReplaceStyles,
    ReplaceVars,
)
from patchstream.parser import parse_operations

log = structlog.get_logger()

_ROOT_BLOCK_RE = re.compile(r":root\s*\{[^}]*\}", re.DOTALL)


# ---------------------------------------------------------------------------
# Per-operation handlers
# ---------------------------------------------------------------------------


def _replace_vars(tree: DocumentTree, op: ReplaceVars) -> ApplyOutcome:
    block = op.content if ":root" in op.content else f":root {{\n{op.content}\n}}"

    styles = tree.style_blocks()
    if not styles:
        tree.append_to_head([tree.new_style(block)])
        return ApplyOutcome.APPLIED

    style = styles[0]
    css = "".join(str(child) for child in style.contents)
    if _ROOT_BLOCK_RE.search(css):
        # Callable replacement: the block may contain backslashes.
        css = _ROOT_BLOCK_RE.sub(lambda _m: block, css, count=1)
    else:
        css = f"{block}\n{css}"
    style.string = css
    return ApplyOutcome.APPLIED


def _replace_styles(tree: DocumentTree, op: ReplaceStyles) -> ApplyOutcome:
    for style in tree.style_blocks():
        style.decompose()

    new_styles: list[Tag] = []
    for node in parse_fragment(op.content):
        if not isinstance(node, Tag):
            continue
        if node.name == "style":
            new_styles.append(node)
        else:
            new_styles.extend(node.find_all("style"))

    if new_styles:
        tree.append_to_head([style.extract() for style in new_styles])
    else:
        # Raw CSS without <style> tags
        tree.append_to_head([tree.new_style(op.content)])
    return ApplyOutcome.APPLIED


def _apply_selector_op(
    tree: DocumentTree, op: Replace | InsertAfter | InsertBefore | Remove
) -> ApplyOutcome:
    node = tree.select_one(op.selector)
    if node is None:
        return ApplyOutcome.SKIPPED_NO_MATCH

    if isinstance(op, Remove):
        tree.remove_node(node)
        return ApplyOutcome.APPLIED

    if not op.content:
        return ApplyOutcome.SKIPPED_EMPTY

    if isinstance(op, Replace):
        tree.replace_node(node, op.content)
    elif isinstance(op, InsertAfter):
        tree.insert_after(node, op.content)
    else:
        tree.insert_before(node, op.content)
    return ApplyOutcome.APPLIED


def _apply_one(tree: DocumentTree, op: PatchOp) -> ApplyOutcome:
    if isinstance(op, ReplaceVars):
        return _replace_vars(tree, op)
    if isinstance(op, ReplaceStyles):
        return _replace_styles(tree, op)
    return _apply_selector_op(tree, op)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def apply_operations_with_report(base_document: str, ops: Sequence[PatchOp]) -> ApplyReport:
    """Apply ``ops`` in the given order and report the outcome of each.

    On any failure the report's document is ``base_document`` and the failing
    operation is the last outcome recorded.
    """
    if not ops:
        return ApplyReport(document=base_document)

    outcomes: list[ApplyOutcome] = []
    try:
        tree = DocumentTree.parse(base_document)
        for op in ops:
            outcome = _apply_one(tree, op)
            if outcome is not ApplyOutcome.APPLIED:
                log.debug("patch_op_skipped", kind=op.kind, outcome=outcome, start=op.start)
            outcomes.append(outcome)
        document = tree.serialize()
    except Exception:
        # Selector syntax errors, parser failures: drop the whole batch.
        outcomes.append(ApplyOutcome.FAILED)
        log.warning(
            "patch_apply_failed",
            op_count=len(ops),
            failed_at=len(outcomes) - 1,
            exc_info=True,
        )
        return ApplyReport(document=base_document, outcomes=outcomes)

    log.debug("patch_ops_applied", op_count=len(ops), applied=outcomes.count(ApplyOutcome.APPLIED))
    return ApplyReport(document=document, outcomes=outcomes)


def apply_operations(base_document: str, ops: Sequence[PatchOp]) -> str:
    """Apply ``ops`` to ``base_document`` and return the new document text."""
    return apply_operations_with_report(base_document, ops).document


# ---------------------------------------------------------------------------
# Incremental applier
# ---------------------------------------------------------------------------


class ApplierUpdate(NamedTuple):
    document: str
    applied_new: bool


class IncrementalApplier:
    """Applies newly completed operations as a patch stream grows.

    One instance per stream. Each call re-parses the full accumulated text and
    applies only the operations past ``applied_count`` to the current
    snapshot, so later operations see the output of earlier ones.
    """

    def __init__(self, base_document: str) -> None:
        self._document = base_document
        self._applied_count = 0

    @property
    def applied_count(self) -> int:
        return self._applied_count

    @property
    def current_document(self) -> str:
        return self._document

    def update(self, accumulated_text: str) -> ApplierUpdate:
        """Apply any operations completed since the last call."""
        ops = parse_operations(accumulated_text)
        if len(ops) <= self._applied_count:
            return ApplierUpdate(self._document, False)

        new_ops = ops[self._applied_count :]
        self._document = apply_operations(self._document, new_ops)
        # Advance even if the batch failed; a broken op is never retried.
        self._applied_count = len(ops)
        return ApplierUpdate(self._document, True)

    def finalize(self, accumulated_text: str) -> str:
        """Pick up operations that completed in the final chunk."""
        return self.update(accumulated_text).document
