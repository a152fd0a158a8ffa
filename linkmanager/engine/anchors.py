"""Finding anchor text occurrences inside markup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from . import markup as markup_module
from .errors import MarkupParseError
from .placement import Selector, explicit_position
from .scanner import ScannedMarkup, TextRun
from .text import find_spans
from .types import Occurrence


def find_occurrences(markup: str, anchor_text: str) -> List[Occurrence]:
    """Return every case-insensitive match of anchor_text, in document order.

    Matches never span text nodes and never overlap. An occurrence is linked
    when the text node sits directly inside an ``<a>`` element.
    """

    if not _usable(markup, anchor_text):
        return []
    try:
        root = markup_module.parse(markup)
    except MarkupParseError:
        return []

    occurrences: List[Occurrence] = []
    for node in markup_module.text_nodes(root):
        parent = node.parent
        is_linked = parent is not None and parent.name == "a"
        existing_url = parent.get("href") if is_linked else None
        text = str(node)
        for start, end in find_spans(text, anchor_text):
            occurrences.append(
                Occurrence(
                    position=len(occurrences) + 1,
                    is_linked=is_linked,
                    existing_url=existing_url,
                    char_offset=start,
                    text=text[start:end],
                    node=node,
                )
            )
    return occurrences


def count_occurrences(markup: str, anchor_text: str) -> int:
    return len(find_occurrences(markup, anchor_text))


def anchor_spans_elements(markup: str, anchor_text: str, selector: Selector = "first") -> bool:
    """True when a targeted match only exists across element boundaries.

    The selector is resolved against text node matches, the same basis
    :func:`find_occurrences` and the mutator use. Spanning is reported when
    the targeted position has no text node match but the flattened plain
    text still holds that many matches.
    """

    if not _usable(markup, anchor_text):
        return False
    try:
        root = markup_module.parse(markup)
    except MarkupParseError:
        return False

    node_matches = sum(len(find_spans(str(node), anchor_text)) for node in markup_module.text_nodes(root))
    wanted = explicit_position(selector) or 1
    if node_matches >= wanted:
        return False
    return len(find_spans(markup_module.plain_text(root), anchor_text)) >= wanted


@dataclass(frozen=True)
class RawMatch:
    """A match located in raw markup by the scanner."""

    run: TextRun
    start: int
    end: int

    @property
    def raw_span(self):
        return self.run.raw_span(self.start, self.end)

    @property
    def inside_anchor(self) -> bool:
        return self.run.inside_anchor


def raw_matches(scanned: ScannedMarkup, anchor_text: str) -> List[RawMatch]:
    """Scanner counterpart of :func:`find_occurrences` used for editing."""

    if not anchor_text or not anchor_text.strip():
        return []
    matches: List[RawMatch] = []
    for run in scanned.text_runs():
        for start, end in find_spans(run.text, anchor_text):
            matches.append(RawMatch(run, start, end))
    return matches


def _usable(markup: str, anchor_text: str) -> bool:
    return bool(markup and markup.strip() and anchor_text and anchor_text.strip())
