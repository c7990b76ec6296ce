"""Patch grammar scanner for streamed generator output.

A patch stream starts with ``<!-- PATCH -->`` and carries a sequence of
marker-delimited operations::

    <!-- PATCH -->
    <!-- REPLACE_VARS --> --brand: #f00; <!-- /REPLACE_VARS -->
    <!-- REPLACE #about --> <section id="about">...</section> <!-- /REPLACE -->
    <!-- INSERT_AFTER #features --> <section>...</section> <!-- /INSERT_AFTER -->
    <!-- REMOVE #old-cta -->
    <!-- /PATCH -->

The scanner is stateless: it is re-run over the whole accumulated buffer on
every chunk. Only operations whose closing marker has arrived are returned, so
a half-received operation simply shows up on a later call.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

from patchstream.models.patch import (
    InsertAfter,
    InsertBefore,
    OpKind,
    PatchOp,
    Remove,
    Replace,
    ReplaceStyles,
    ReplaceVars,
)

PATCH_START_MARKER = "<!-- PATCH"
# Shorter buffers may hold a half-received start marker.
_MIN_PATCH_LENGTH = len("<!-- PATCH -->")

# Selectors are whitespace-separated runs without ">" (no child combinator).
_SELECTOR = r"(?P<selector>[^\s>]+(?:\s+[^\s>]+)*?)"


def _open(name: str, *, selector: bool) -> re.Pattern[str]:
    if selector:
        return re.compile(rf"<!--\s*{name}\s+{_SELECTOR}\s*-->")
    return re.compile(rf"<!--\s*{name}\s*-->")


def _close(name: str) -> re.Pattern[str]:
    return re.compile(rf"<!--\s*/{name}\s*-->")


# kind -> (opening marker, closing marker, model)
_BLOCK_GRAMMAR: dict[OpKind, tuple[re.Pattern[str], re.Pattern[str], type]] = {
    OpKind.REPLACE_VARS: (_open("REPLACE_VARS", selector=False), _close("REPLACE_VARS"), ReplaceVars),
    OpKind.REPLACE_STYLES: (
        _open("REPLACE_STYLES", selector=False),
        _close("REPLACE_STYLES"),
        ReplaceStyles,
    ),
    OpKind.REPLACE: (_open("REPLACE", selector=True), _close("REPLACE"), Replace),
    OpKind.INSERT_AFTER: (_open("INSERT_AFTER", selector=True), _close("INSERT_AFTER"), InsertAfter),
    OpKind.INSERT_BEFORE: (
        _open("INSERT_BEFORE", selector=True),
        _close("INSERT_BEFORE"),
        InsertBefore,
    ),
}

# REMOVE is self-closing and has no body.
_REMOVE_RE = _open("REMOVE", selector=True)


def is_patch_stream(text: str | None) -> bool:
    """Return True if the accumulated response is a patch stream, not a full document."""
    if not text or len(text) < _MIN_PATCH_LENGTH:
        return False
    return text.lstrip().startswith(PATCH_START_MARKER)


def _scan_blocks(
    text: str, opener: re.Pattern[str], closer: re.Pattern[str]
) -> Iterator[tuple[re.Match[str], re.Match[str]]]:
    """Yield (open, close) marker pairs, non-overlapping, left to right.

    Stops at the first opening marker whose closing marker has not arrived;
    no later opening marker can have one either.
    """
    pos = 0
    while True:
        open_match = opener.search(text, pos)
        if open_match is None:
            return
        close_match = closer.search(text, open_match.end())
        if close_match is None:
            return
        yield open_match, close_match
        pos = close_match.end()


def parse_operations(text: str) -> list[PatchOp]:
    """Parse every fully closed operation in ``text``, in document order.

    Safe to call on every streaming chunk. Returns an empty list for text that
    is not a patch stream.
    """
    if not is_patch_stream(text):
        return []

    ops: list[PatchOp] = []

    for kind, (opener, closer, model) in _BLOCK_GRAMMAR.items():
        for open_match, close_match in _scan_blocks(text, opener, closer):
            fields: dict[str, object] = {
                "start": open_match.start(),
                "end": close_match.end(),
                "content": text[open_match.end() : close_match.start()].strip(),
            }
            if kind not in (OpKind.REPLACE_VARS, OpKind.REPLACE_STYLES):
                fields["selector"] = open_match.group("selector").strip()
            ops.append(model(**fields))

    for match in _REMOVE_RE.finditer(text):
        ops.append(
            Remove(
                start=match.start(),
                end=match.end(),
                selector=match.group("selector").strip(),
            )
        )

    # Interleaved kinds must be applied in the order they appeared.
    ops.sort(key=lambda op: op.start)
    return ops
