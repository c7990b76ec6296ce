"""Mutable document tree for patch application.

A thin layer over a BeautifulSoup tree (``html.parser`` builder) exposing only
what patch operations need: selector lookup, sibling insertion, replacement,
removal, the head region with its style blocks, and serialization back to a
full document with a doctype.
"""

from __future__ import annotations

from bs4 import BeautifulSoup, Doctype, Tag
from bs4.dammit import EntitySubstitution
from bs4.element import PageElement
from bs4.formatter import HTMLFormatter

DEFAULT_DOCTYPE = "<!DOCTYPE html>\n"

_PARSER = "html.parser"
# Minimal entity escaping; void elements serialize as <br>, not <br/>.
_FORMATTER = HTMLFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    void_element_close_prefix=None,
)


def parse_fragment(markup: str) -> list[PageElement]:
    """Parse a markup fragment into detached top-level nodes, in order."""
    fragment = BeautifulSoup(markup, _PARSER)
    return [node.extract() for node in list(fragment.contents)]


class DocumentTree:
    """Parsed document supporting selector-based structural mutation."""

    def __init__(self, soup: BeautifulSoup) -> None:
        self._soup = soup

    @classmethod
    def parse(cls, markup: str) -> DocumentTree:
        return cls(BeautifulSoup(markup, _PARSER))

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def select_one(self, selector: str) -> Tag | None:
        """Return the first node in document order matching ``selector``.

        Raises ``soupsieve.SelectorSyntaxError`` for malformed selectors.
        """
        return self._soup.select_one(selector)

    @property
    def head(self) -> Tag:
        """The head region, created at the top of the document if absent."""
        head = self._soup.head
        if head is not None:
            return head
        head = self._soup.new_tag("head")
        root = self._soup.html
        if root is not None:
            root.insert(0, head)
        else:
            index = 1 if self._doctype() is not None else 0
            self._soup.insert(index, head)
        return head

    def style_blocks(self) -> list[Tag]:
        """Style blocks in the head region, in document order."""
        return self.head.find_all("style")

    def new_style(self, css: str) -> Tag:
        style = self._soup.new_tag("style")
        style.string = css
        return style

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def replace_node(self, node: Tag, markup: str) -> None:
        for new_node in parse_fragment(markup):
            node.insert_before(new_node)
        node.extract()

    def insert_after(self, node: Tag, markup: str) -> None:
        anchor: PageElement = node
        for new_node in parse_fragment(markup):
            anchor.insert_after(new_node)
            anchor = new_node

    def insert_before(self, node: Tag, markup: str) -> None:
        for new_node in parse_fragment(markup):
            node.insert_before(new_node)

    def remove_node(self, node: Tag) -> None:
        node.decompose()

    def append_to_head(self, nodes: list[PageElement]) -> None:
        head = self.head
        for node in nodes:
            head.append(node)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _doctype(self) -> Doctype | None:
        for node in self._soup.contents:
            if isinstance(node, Doctype):
                return node
        return None

    def serialize(self) -> str:
        """Render the full document, keeping the source doctype or adding one."""
        doctype = self._doctype()
        prefix = f"<!DOCTYPE {str(doctype).strip()}>\n" if doctype is not None else DEFAULT_DOCTYPE

        root = self._soup.html
        if root is not None:
            return prefix + root.decode(formatter=_FORMATTER)

        parts: list[str] = []
        for node in self._soup.contents:
            if isinstance(node, Doctype):
                continue
            if isinstance(node, Tag):
                parts.append(node.decode(formatter=_FORMATTER))
            else:
                parts.append(node.output_ready(formatter=_FORMATTER))
        return prefix + "".join(parts).lstrip()
