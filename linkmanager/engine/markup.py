"""Parsing and serializing document fragments with BeautifulSoup.

Fragments are wrapped in a synthetic ``<linkmanager-root>`` element so that
markup without a root element, doctype or body parses the same way every
time; serialization strips the wrapper again.
"""

from __future__ import annotations

from typing import Iterator, List

from bs4 import BeautifulSoup, NavigableString, Tag  # type: ignore

from .errors import MarkupParseError

WRAPPER_TAG = "linkmanager-root"

# Strings inside these elements are not part of the readable text.
OPAQUE_CONTAINERS = frozenset({"script", "style", "template", "textarea", "title", "rt", "rp"})


def parse(fragment: str) -> Tag:
    """Parse a markup fragment and return the synthetic wrapper element.

    The ``html.parser`` builder is lenient: unknown tags, unescaped
    ampersands and unclosed elements never raise. Only empty input is
    treated as unparseable.
    """

    if fragment is None or not str(fragment).strip():
        raise MarkupParseError("Cannot parse empty markup.")

    soup = BeautifulSoup(
        f"<{WRAPPER_TAG}>{fragment}</{WRAPPER_TAG}>",
        "html.parser",
        multi_valued_attributes=None,
    )
    root = soup.find(WRAPPER_TAG)
    if root is None:
        raise MarkupParseError("Markup could not be parsed.")
    return root


def serialize(node) -> str:
    """Render a node; the wrapper renders as its inner markup only."""

    if isinstance(node, Tag) and node.name == WRAPPER_TAG:
        return node.decode_contents()
    if isinstance(node, Tag):
        return node.decode()
    return str(node)


def text_nodes(root: Tag) -> List[NavigableString]:
    """Readable text nodes under root, in document order."""

    return list(_iter_text_nodes(root))


def plain_text(root: Tag) -> str:
    return "".join(str(node) for node in _iter_text_nodes(root))


def _iter_text_nodes(root: Tag) -> Iterator[NavigableString]:
    for node in root.descendants:
        # Comments, CDATA, doctypes and script strings are NavigableString
        # subclasses; only plain strings count as text.
        if type(node) is not NavigableString:
            continue
        if _inside_opaque(node, root):
            continue
        yield node


def _inside_opaque(node: NavigableString, root: Tag) -> bool:
    parent = node.parent
    while parent is not None and parent is not root:
        if parent.name and parent.name.lower() in OPAQUE_CONTAINERS:
            return True
        parent = parent.parent
    return False
