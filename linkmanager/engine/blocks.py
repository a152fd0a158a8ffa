"""Block-structured documents.

Block documents interleave HTML with delimiter comments such as
``<!-- wp:paragraph -->`` / ``<!-- /wp:paragraph -->`` and self-closing
``<!-- wp:image {"id":3} /-->``. :func:`parse_blocks` turns the body into a
tree of :class:`Block` values that keeps every delimiter verbatim, so
:func:`serialize_blocks` reproduces an unedited document byte for byte.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List

from .anchors import raw_matches
from .context import TraversalContext
from .placement import Selector, resolve_targets
from .scanner import scan
from .types import Block, MutationResult

if TYPE_CHECKING:  # pragma: no cover
    from .mutator import LinkMutator

_DELIMITER = re.compile(
    r"<!--\s+(?P<closer>/)?wp:(?P<namespace>[a-z][a-z0-9_-]*/)?(?P<name>[a-z][a-z0-9_-]*)\s+"
    r"(?P<attrs>\{(?:(?!-->).)*?\}\s+)?(?P<void>/)?-->",
    re.DOTALL,
)
_DETECT = re.compile(r"<!-- wp:[a-z][a-z0-9-]*(?:/[a-z][a-z0-9-]*)? ")


def has_blocks(content: str) -> bool:
    return bool(content) and _DETECT.search(content) is not None


def parse_blocks(content: str) -> List[Block]:
    document: List[Block] = []
    stack: List[Block] = []
    pos = 0

    for match in _DELIMITER.finditer(content or ""):
        _add_literal(document, stack, content[pos:match.start()])
        pos = match.end()
        name = _block_name(match)
        raw = match.group(0)

        if match.group("closer"):
            if stack and stack[-1].name == name:
                block = stack.pop()
                block.raw_close = raw
                block.refresh_inner_markup()
                _attach(document, stack, block)
            else:
                # A closer without its opener stays in the markup untouched.
                _add_literal(document, stack, raw)
            continue

        block = Block(name=name, attrs=_parse_attrs(match.group("attrs")), raw_open=raw)
        if match.group("void"):
            _attach(document, stack, block)
        else:
            stack.append(block)

    _add_literal(document, stack, (content or "")[pos:])

    # Blocks left open run to the end of the document.
    while stack:
        block = stack.pop()
        block.refresh_inner_markup()
        _attach(document, stack, block)
    return document


def serialize_blocks(blocks: Iterable[Block]) -> str:
    return "".join(serialize_block(block) for block in blocks)


def serialize_block(block: Block) -> str:
    parts = [block.raw_open or _opener(block)]
    children = iter(block.children)
    if block.segments:
        for segment in block.segments:
            if segment is None:
                child = next(children, None)
                if child is not None:
                    parts.append(serialize_block(child))
            else:
                parts.append(segment)
    else:
        parts.append(block.inner_markup)
    parts.extend(serialize_block(child) for child in children)
    if block.raw_close:
        parts.append(block.raw_close)
    elif block.name is not None and not block.raw_open and not _is_void(block):
        parts.append(f"<!-- /wp:{_short_name(block.name)} -->")
    return "".join(parts)


class BlockTreeWalker:
    """Applies add-link across a block tree with one global occurrence counter.

    Literal segments are visited in document order: a block's literals in
    sequence, descending into the child block at each placeholder, so the
    Nth occurrence here is the Nth occurrence of the flattened document.
    """

    def __init__(self, mutator: "LinkMutator") -> None:
        self.mutator = mutator

    def count(self, blocks: Iterable[Block], anchor_text: str) -> int:
        total = 0

        def tally(literal: str) -> str:
            nonlocal total
            total += len(raw_matches(scan(literal), anchor_text))
            return literal

        for block in blocks:
            self._visit(block, tally)
        return total

    def add_link(
        self,
        content: str,
        anchor_text: str,
        url: str,
        attributes: Dict[str, str],
        selector: Selector,
        if_exists: str,
    ) -> MutationResult:
        blocks = parse_blocks(content)
        context = TraversalContext(
            roots=blocks,
            anchor_text=anchor_text,
            selector=selector,
            url=url,
            attributes=attributes,
            if_exists=if_exists,
            result=MutationResult(content=content),
        )

        for block in blocks:
            self._visit(block, lambda literal: self._add_in_literal(literal, context))

        result = context.result
        if result.changed:
            result.content = serialize_blocks(blocks)
        return result

    def _add_in_literal(self, literal: str, context: TraversalContext) -> str:
        scanned = scan(literal)
        matches = raw_matches(scanned, context.anchor_text)
        if not matches:
            return literal

        if not context.resolved:
            context.total = self.count(context.roots, context.anchor_text)
            context.targets = set(resolve_targets(context.selector, context.total))

        first = context.counter
        context.counter += len(matches)
        picks = [
            (first + offset + 1, match)
            for offset, match in enumerate(matches)
            if first + offset in context.targets
        ]
        if not picks:
            return literal
        return self.mutator.apply_additions(
            literal,
            scanned,
            picks,
            context.url,
            context.attributes,
            context.if_exists,
            context.result,
        )

    def _visit(self, block: Block, handle: Callable[[str], str]) -> None:
        if not block.segments:
            if block.inner_markup:
                updated = handle(block.inner_markup)
                if updated != block.inner_markup:
                    block.segments = [updated] + [None] * len(block.children)
                    block.inner_markup = updated
            for child in block.children:
                self._visit(child, handle)
            return

        children = iter(block.children)
        for index, segment in enumerate(block.segments):
            if segment is None:
                child = next(children, None)
                if child is not None:
                    self._visit(child, handle)
            else:
                block.segments[index] = handle(segment)
        for child in children:
            self._visit(child, handle)
        block.refresh_inner_markup()


def _add_literal(document: List[Block], stack: List[Block], text: str) -> None:
    if not text:
        return
    if stack:
        parent = stack[-1]
        if parent.segments and parent.segments[-1] is not None:
            parent.segments[-1] += text
        else:
            parent.segments.append(text)
        return
    if document and document[-1].name is None:
        document[-1].segments[-1] += text
        document[-1].refresh_inner_markup()
        return
    document.append(Block(name=None, inner_markup=text, segments=[text]))


def _attach(document: List[Block], stack: List[Block], block: Block) -> None:
    if stack:
        stack[-1].children.append(block)
        stack[-1].segments.append(None)
    else:
        document.append(block)


def _block_name(match: re.Match) -> str:
    namespace = match.group("namespace") or "core/"
    return f"{namespace}{match.group('name')}"


def _parse_attrs(raw: str | None) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def _short_name(name: str) -> str:
    return name[len("core/"):] if name.startswith("core/") else name


def _is_void(block: Block) -> bool:
    return not block.segments and not block.inner_markup and not block.children


def _opener(block: Block) -> str:
    if block.name is None:
        return ""
    attrs = f"{json.dumps(block.attrs, separators=(',', ':'))} " if block.attrs else ""
    closer = "/" if _is_void(block) else ""
    return f"<!-- wp:{_short_name(block.name)} {attrs}{closer}-->"
