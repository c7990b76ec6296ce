"""Unit tests for the patch grammar scanner."""

from __future__ import annotations

from patchstream.models.patch import (
    InsertAfter,
    InsertBefore,
    OpKind,
    Remove,
    Replace,
    ReplaceStyles,
    ReplaceVars,
)
from patchstream.parser import is_patch_stream, parse_operations

FULL_PATCH = (
    "<!-- PATCH -->\n"
    "<!-- REPLACE_VARS -->\n--brand: #f00;\n<!-- /REPLACE_VARS -->\n"
    '<!-- REPLACE #hero -->\n<section id="hero">new</section>\n<!-- /REPLACE -->\n'
    '<!-- INSERT_AFTER #features -->\n<section id="quotes">q</section>\n<!-- /INSERT_AFTER -->\n'
    "<!-- REMOVE #old-cta -->\n"
    "<!-- REPLACE_STYLES -->\n<style>body { color: red; }</style>\n<!-- /REPLACE_STYLES -->\n"
    '<!-- INSERT_BEFORE #hero -->\n<nav id="top">n</nav>\n<!-- /INSERT_BEFORE -->\n'
    "<!-- /PATCH -->"
)


# ---------------------------------------------------------------------------
# is_patch_stream
# ---------------------------------------------------------------------------


class TestIsPatchStream:
    def test_patch_marker(self) -> None:
        assert is_patch_stream("<!-- PATCH -->\n")

    def test_leading_whitespace_ignored(self) -> None:
        assert is_patch_stream("\n\n   <!-- PATCH -->")

    def test_full_document_is_not_patch(self) -> None:
        assert not is_patch_stream("<!DOCTYPE html><html><body></body></html>")

    def test_marker_later_in_text_is_not_patch(self) -> None:
        assert not is_patch_stream("<html><!-- PATCH --></html>")

    def test_too_short_is_not_patch(self) -> None:
        assert not is_patch_stream("<!-- PATCH")

    def test_empty_and_none(self) -> None:
        assert not is_patch_stream("")
        assert not is_patch_stream(None)


# ---------------------------------------------------------------------------
# parse_operations
# ---------------------------------------------------------------------------


class TestParseOperations:
    def test_all_kinds_in_document_order(self) -> None:
        ops = parse_operations(FULL_PATCH)
        assert [op.kind for op in ops] == [
            OpKind.REPLACE_VARS,
            OpKind.REPLACE,
            OpKind.INSERT_AFTER,
            OpKind.REMOVE,
            OpKind.REPLACE_STYLES,
            OpKind.INSERT_BEFORE,
        ]
        starts = [op.start for op in ops]
        assert starts == sorted(starts)

    def test_fields_are_extracted_and_trimmed(self) -> None:
        ops = parse_operations(FULL_PATCH)
        assert ops[0] == ReplaceVars(start=ops[0].start, end=ops[0].end, content="--brand: #f00;")
        assert isinstance(ops[1], Replace)
        assert ops[1].selector == "#hero"
        assert ops[1].content == '<section id="hero">new</section>'
        assert isinstance(ops[2], InsertAfter)
        assert ops[2].selector == "#features"
        assert isinstance(ops[3], Remove)
        assert ops[3].selector == "#old-cta"
        assert isinstance(ops[4], ReplaceStyles)
        assert ops[4].content == "<style>body { color: red; }</style>"
        assert isinstance(ops[5], InsertBefore)
        assert ops[5].content == '<nav id="top">n</nav>'

    def test_end_offset_is_after_closing_marker(self) -> None:
        text = "<!-- PATCH -->\n<!-- REPLACE #a -->x<!-- /REPLACE -->tail"
        (op,) = parse_operations(text)
        assert text[op.start : op.end] == "<!-- REPLACE #a -->x<!-- /REPLACE -->"
        assert text[op.end :] == "tail"

    def test_remove_end_offset(self) -> None:
        text = "<!-- PATCH -->\n<!-- REMOVE #x -->\n"
        (op,) = parse_operations(text)
        assert text[op.start : op.end] == "<!-- REMOVE #x -->"

    def test_not_a_patch_stream_yields_nothing(self) -> None:
        text = '<html><!-- REPLACE #a --><p></p><!-- /REPLACE --></html>'
        assert parse_operations(text) == []

    def test_unclosed_operation_is_omitted(self) -> None:
        text = '<!-- PATCH -->\n<!-- REPLACE #hero -->\n<section id="hero">ne'
        assert parse_operations(text) == []

    def test_selector_with_descendant_combinator(self) -> None:
        text = "<!-- PATCH -->\n<!-- REMOVE main .card -->\n"
        (op,) = parse_operations(text)
        assert op.selector == "main .card"

    def test_attribute_selector(self) -> None:
        text = '<!-- PATCH -->\n<!-- REPLACE section[data-role=hero] -->x<!-- /REPLACE -->'
        (op,) = parse_operations(text)
        assert op.selector == "section[data-role=hero]"

    def test_replace_vars_not_mistaken_for_replace(self) -> None:
        text = "<!-- PATCH -->\n<!-- REPLACE_VARS -->--a: 1;<!-- /REPLACE_VARS -->"
        ops = parse_operations(text)
        assert [op.kind for op in ops] == [OpKind.REPLACE_VARS]

    def test_closing_marker_of_other_kind_not_a_remove(self) -> None:
        text = "<!-- PATCH -->\n<!-- /REMOVE -->\n<!-- /REPLACE -->\n<!-- /PATCH -->"
        assert parse_operations(text) == []

    def test_remove_without_selector_is_ignored(self) -> None:
        assert parse_operations("<!-- PATCH -->\n<!-- REMOVE -->\n") == []

    def test_remove_marker_without_space_before_close(self) -> None:
        (op,) = parse_operations("<!-- PATCH -->\n<!-- REMOVE #x--> \n<!-- /PATCH -->")
        assert op.selector == "#x"

    def test_same_kind_is_not_nested(self) -> None:
        text = (
            "<!-- PATCH -->\n"
            "<!-- REPLACE #a -->A<!-- /REPLACE -->"
            "<!-- REPLACE #b -->B<!-- /REPLACE -->"
        )
        ops = parse_operations(text)
        assert [(op.selector, op.content) for op in ops] == [("#a", "A"), ("#b", "B")]

    def test_operation_split_by_remaining_text_is_stable(self) -> None:
        """Every prefix yields a prefix of the full result; ops never change once seen."""
        full = parse_operations(FULL_PATCH)
        previous: list = []
        for cut in range(len(FULL_PATCH) + 1):
            ops = parse_operations(FULL_PATCH[:cut])
            assert len(ops) <= len(full)
            assert ops == full[: len(ops)]
            assert len(ops) >= len(previous)
            previous = ops
        assert previous == full
