"""Positional lexer for editing markup in place.

The BeautifulSoup tree answers questions about a document, but rewriting it
through the tree would re-serialize every untouched element. The scanner walks
the raw string instead and records where each text run and each ``<a>``
element sits, so the mutator can splice new markup into exactly the edited
byte range. Its element bookkeeping follows ``html.parser`` as used by
BeautifulSoup: void elements close immediately, ``</x>`` closes the most
recent open ``x`` and everything opened after it, and stray end tags are
ignored.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .markup import OPAQUE_CONTAINERS

_TOKEN = re.compile(
    r"<!--.*?(?:-->|\Z)"
    r"|<!\[CDATA\[.*?(?:\]\]>|\Z)"
    r"|<![^>]*>"
    r"|<\?[^>]*>"
    r"|</[A-Za-z][^>]*>"
    r"|<[A-Za-z][^\s/>]*(?:\"[^\"]*\"|'[^']*'|[^'\">])*>",
    re.DOTALL,
)
_TAG_NAME = re.compile(r"</?([A-Za-z][^\s/>]*)")
_ATTRIBUTE = re.compile(
    r"""([^\s"'>/=][^\s"'>/=]*)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+)))?"""
)
_ENTITY = re.compile(r"&(?:#[0-9]+;?|#[xX][0-9a-fA-F]+;?|[A-Za-z][A-Za-z0-9]*;?)")

RAW_TEXT_ELEMENTS = frozenset({"script", "style"})
VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "basefont",
        "bgsound",
        "br",
        "col",
        "command",
        "embed",
        "frame",
        "hr",
        "image",
        "img",
        "input",
        "isindex",
        "keygen",
        "link",
        "menuitem",
        "meta",
        "nextid",
        "param",
        "source",
        "spacer",
        "track",
        "wbr",
    }
)


@dataclass
class AnchorSpan:
    """Raw location of one ``<a>`` element.

    ``start``/``open_end`` bound the start tag, ``close_start``/``end`` the
    end tag. An element closed implicitly (by an ancestor's end tag or by the
    end of the document) has ``close_start == end``.
    """

    start: int
    open_end: int
    attributes: Dict[str, str]
    close_start: int = -1
    end: int = -1
    closed: bool = False
    text_parts: List[str] = field(default_factory=list)

    @property
    def has_href(self) -> bool:
        return "href" in self.attributes

    @property
    def href(self) -> Optional[str]:
        return self.attributes.get("href")

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    def inner(self, markup: str) -> str:
        return markup[self.open_end:self.close_start]


@dataclass
class TextRun:
    """A text node's raw range plus its decoded text.

    ``starts[i]``/``ends[i]`` give the raw range that produced decoded
    character ``i``; an entity maps every character it decodes to to the
    whole entity.
    """

    start: int
    end: int
    text: str
    starts: List[int]
    ends: List[int]
    anchors: Tuple[int, ...]
    opaque: bool

    @property
    def inside_anchor(self) -> bool:
        return bool(self.anchors)

    def raw_span(self, start: int, end: int) -> Tuple[int, int]:
        return self.starts[start], self.ends[end - 1]


@dataclass
class ScannedMarkup:
    markup: str
    runs: List[TextRun]
    anchors: List[AnchorSpan]

    def text_runs(self) -> List[TextRun]:
        return [run for run in self.runs if not run.opaque]

    def hyperlinks(self) -> List[AnchorSpan]:
        """``<a href>`` elements in document order."""

        return [anchor for anchor in self.anchors if anchor.has_href]


@dataclass
class _Element:
    name: str
    anchor: Optional[int] = None


def scan(markup: str) -> ScannedMarkup:
    """Lex markup into text runs and anchor spans."""

    markup = markup or ""
    runs: List[TextRun] = []
    anchors: List[AnchorSpan] = []
    stack: List[_Element] = []
    length = len(markup)
    pos = 0
    text_start = 0

    def flush(end: int) -> None:
        if end <= text_start:
            return
        text, starts, ends = _decode(markup[text_start:end], text_start)
        open_anchors = tuple(element.anchor for element in stack if element.anchor is not None)
        opaque = any(element.name in OPAQUE_CONTAINERS for element in stack)
        run = TextRun(text_start, end, text, starts, ends, open_anchors, opaque)
        runs.append(run)
        if not opaque:
            for index in open_anchors:
                anchors[index].text_parts.append(text)

    def close(element: _Element, close_start: int, close_end: int) -> None:
        if element.anchor is None:
            return
        span = anchors[element.anchor]
        span.close_start = close_start
        span.end = close_end
        span.closed = close_end > close_start

    while pos < length:
        lt = markup.find("<", pos)
        if lt == -1:
            break
        match = _TOKEN.match(markup, lt)
        if match is None:
            pos = lt + 1
            continue

        flush(lt)
        token = match.group(0)
        pos = text_start = match.end()

        if token.startswith("</"):
            name = _TAG_NAME.match(token).group(1).lower()
            if name in VOID_ELEMENTS:
                continue
            for depth in range(len(stack) - 1, -1, -1):
                if stack[depth].name == name:
                    for element in reversed(stack[depth + 1:]):
                        close(element, match.start(), match.start())
                    close(stack[depth], match.start(), match.end())
                    del stack[depth:]
                    break
            continue

        if token.startswith("<!") or token.startswith("<?"):
            continue

        name = _TAG_NAME.match(token).group(1).lower()
        element = _Element(name)
        if name == "a":
            element.anchor = len(anchors)
            anchors.append(AnchorSpan(match.start(), match.end(), _attributes(token, name)))

        if token.endswith("/>") or name in VOID_ELEMENTS:
            stack.append(element)
            close(stack.pop(), match.end(), match.end())
            continue

        stack.append(element)
        if name in RAW_TEXT_ELEMENTS:
            closing = re.compile(r"</%s(?=[\s/>])" % re.escape(name), re.IGNORECASE).search(markup, pos)
            raw_end = closing.start() if closing else length
            if raw_end > pos:
                runs.append(TextRun(pos, raw_end, markup[pos:raw_end], [], [], (), True))
            pos = text_start = raw_end

    flush(length)
    for element in stack:
        close(element, length, length)

    return ScannedMarkup(markup, runs, anchors)


def _attributes(token: str, name: str) -> Dict[str, str]:
    body = token[1 + len(name):-1]
    if body.endswith("/"):
        body = body[:-1]
    attributes: Dict[str, str] = {}
    for match in _ATTRIBUTE.finditer(body):
        key = match.group(1).lower()
        value = next((group for group in match.group(2, 3, 4) if group is not None), "")
        attributes[key] = html.unescape(value)
    return attributes


def _decode(raw: str, base: int) -> Tuple[str, List[int], List[int]]:
    chars: List[str] = []
    starts: List[int] = []
    ends: List[int] = []
    pos = 0
    for match in _ENTITY.finditer(raw):
        for index in range(pos, match.start()):
            chars.append(raw[index])
            starts.append(base + index)
            ends.append(base + index + 1)
        for char in html.unescape(match.group(0)):
            chars.append(char)
            starts.append(base + match.start())
            ends.append(base + match.end())
        pos = match.end()
    for index in range(pos, len(raw)):
        chars.append(raw[index])
        starts.append(base + index)
        ends.append(base + index + 1)
    return "".join(chars), starts, ends
