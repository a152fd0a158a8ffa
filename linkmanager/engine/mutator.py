"""Adding, updating and removing hyperlinks in document bodies.

Edits are spliced into the raw markup at positions reported by the scanner,
so everything outside the edited element keeps its original bytes. Each
call recomputes occurrences and links from the markup it receives.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from bs4 import BeautifulSoup  # type: ignore

from . import filters
from .anchors import RawMatch, raw_matches
from .blocks import BlockTreeWalker, has_blocks
from .config import EngineConfig
from .links import LinkExtractor, find_by_identifier
from .placement import Selector, resolve_targets
from .scanner import AnchorSpan, ScannedMarkup, scan
from .text import normalize_space
from .types import (
    ExtractedLink,
    Identifier,
    LinkChange,
    MutationResult,
    RemovedLink,
    ReplacedLink,
    SkippedOccurrence,
)

logger = logging.getLogger(__name__)

FLAT = "flat"
BLOCKS = "blocks"
DIALECTS = (FLAT, BLOCKS)
IF_EXISTS_POLICIES = ("skip", "replace")
REMOVE_ACTIONS = ("unlink", "delete")


def detect_dialect(markup: str) -> str:
    return BLOCKS if has_blocks(markup) else FLAT


class LinkMutator:
    """Applies link edits to flat or block-structured markup."""

    def __init__(self, config: EngineConfig, extractor: Optional[LinkExtractor] = None) -> None:
        self.config = config
        self.extractor = extractor or LinkExtractor(config)

    def add_link(
        self,
        markup: str,
        anchor_text: str,
        url: str,
        attributes: Optional[Mapping[str, Any]] = None,
        occurrence: Selector = "first",
        if_exists: str = "skip",
        dialect: Optional[str] = None,
    ) -> MutationResult:
        """Wrap the selected occurrences of anchor_text in a link to url.

        Occurrences already inside an ``<a>`` element are skipped or, with
        ``if_exists="replace"``, have that element retargeted. An explicit
        occurrence past the last match selects nothing.
        """

        if if_exists not in IF_EXISTS_POLICIES:
            raise ValueError(f"Unknown if_exists policy: {if_exists!r}")
        href = filters.ensure_safe_url(url, self.config)
        link_attributes = self._link_attributes(attributes)

        result = MutationResult(content=markup)
        if not markup or not markup.strip() or not anchor_text or not anchor_text.strip():
            return result

        if self._dialect(markup, dialect) == BLOCKS:
            walker = BlockTreeWalker(self)
            result = walker.add_link(markup, anchor_text, href, link_attributes, occurrence, if_exists)
        else:
            scanned = scan(markup)
            matches = raw_matches(scanned, anchor_text)
            picks = [(index + 1, matches[index]) for index in resolve_targets(occurrence, len(matches))]
            result.content = self.apply_additions(
                markup, scanned, picks, href, link_attributes, if_exists, result
            )

        result.skipped.sort(key=lambda item: item.occurrence)
        result.replaced.sort(key=lambda item: item.occurrence)
        return result

    def apply_additions(
        self,
        markup: str,
        scanned: ScannedMarkup,
        picks: Sequence[Tuple[int, RawMatch]],
        url: str,
        attributes: Dict[str, str],
        if_exists: str,
        result: MutationResult,
    ) -> str:
        """Apply one add-link pass to a single fragment.

        ``picks`` pairs each selected match with its document-wide position.
        They are applied last to first so earlier offsets stay valid.
        """

        replaced_starts = set()
        for position, match in sorted(picks, key=lambda pick: pick[0], reverse=True):
            if match.inside_anchor:
                if if_exists == "skip":
                    span = scanned.anchors[match.run.anchors[-1]]
                    logger.debug("Skipping occurrence %s already linked to %s", position, span.href)
                    result.skipped.append(SkippedOccurrence(position, "already_linked", span.href))
                    continue
                # Nested links are rewritten once, through the outermost one.
                span = scanned.anchors[match.run.anchors[0]]
                if span.start in replaced_starts:
                    continue
                replaced_starts.add(span.start)
                merged = {key: value for key, value in span.attributes.items() if key != "href"}
                merged.update(attributes)
                tag = filters.build_link_tag(url, span.inner(markup), merged, self.config)
                markup = markup[:span.start] + tag + markup[span.end:]
                result.replaced.append(ReplacedLink(position, span.href))
                result.links_replaced += 1
                continue

            start, end = match.raw_span
            tag = filters.build_link_tag(url, markup[start:end], attributes, self.config)
            markup = markup[:start] + tag + markup[end:]
            result.links_added += 1
        return markup

    def update_link(
        self,
        markup: str,
        identifier: Union[Identifier, Mapping[str, Any]],
        new_url: Optional[str] = None,
        new_anchor_text: Optional[str] = None,
        new_attributes: Optional[Mapping[str, Any]] = None,
        merge_attributes: bool = True,
        dialect: Optional[str] = None,
    ) -> MutationResult:
        """Rewrite the links an identifier points at.

        Old href, text and attributes are kept unless overridden. With
        ``merge_attributes`` new attributes win over old ones; without it
        they replace the old set entirely. Calling this with no overrides
        reports zero updates.
        """

        identifier = _as_identifier(identifier)
        self._dialect(markup, dialect)
        result = MutationResult(content=markup)
        if new_url is None and new_anchor_text is None and new_attributes is None:
            return result
        if new_url is not None:
            new_url = filters.ensure_safe_url(new_url, self.config)

        located = self._locate(markup, identifier)
        if not located:
            return result

        new_inner = None
        new_text = None
        if new_anchor_text is not None:
            new_inner = filters.sanitize_anchor_html(new_anchor_text, self.config)
            new_text = BeautifulSoup(new_inner, "html.parser").get_text()
        filtered = filters.filter_attributes(new_attributes, self.config) if new_attributes is not None else None

        edits: List[Tuple[AnchorSpan, str]] = []
        for link, span in located:
            old_attributes = {key: value for key, value in span.attributes.items() if key != "href"}
            if filtered is None:
                final = dict(old_attributes)
            elif merge_attributes:
                final = {**old_attributes, **filtered}
            else:
                final = dict(filtered)

            target_url = new_url if new_url is not None else span.href
            inner = new_inner if new_inner is not None else span.inner(markup)
            edits.append((span, filters.build_link_tag(target_url, inner, final, self.config)))

            anchor_change = None
            if new_text is not None and new_text != link.anchor_text:
                anchor_change = (link.anchor_text, new_text)
            result.changes.append(
                LinkChange(
                    position=link.position,
                    target=(link.url, target_url) if target_url != link.url else None,
                    anchor=anchor_change,
                    attributes_added={key: value for key, value in final.items() if key not in old_attributes},
                    attributes_removed=[key for key in old_attributes if key not in final],
                    attributes_changed={
                        key: (old_attributes[key], value)
                        for key, value in final.items()
                        if key in old_attributes and old_attributes[key] != value
                    },
                )
            )
            result.links_updated += 1

        result.content = _splice(markup, edits)
        result.changes.sort(key=lambda change: change.position)
        return result

    def remove_link(
        self,
        markup: str,
        identifier: Union[Identifier, Mapping[str, Any]],
        action: str = "unlink",
        dialect: Optional[str] = None,
    ) -> MutationResult:
        """Unlink (keep the text) or delete (drop element and text) links."""

        if action not in REMOVE_ACTIONS:
            raise ValueError(f"Unknown remove action: {action!r}")
        identifier = _as_identifier(identifier)
        self._dialect(markup, dialect)
        result = MutationResult(content=markup)

        edits: List[Tuple[AnchorSpan, str]] = []
        for link, span in self._locate(markup, identifier):
            edits.append((span, span.inner(markup) if action == "unlink" else ""))
            result.removed_links.append(RemovedLink(link.anchor_text, link.url, link.position))
            result.links_removed += 1

        result.content = _splice(markup, edits)
        result.removed_links.sort(key=lambda item: item.position)
        return result

    def _locate(self, markup: str, identifier: Identifier) -> List[Tuple[ExtractedLink, AnchorSpan]]:
        """Pair each identified link with its raw element.

        The element at the link's document position is used when its href
        agrees; otherwise the Nth element with the same href and text, N
        being the link's rank among identical links.
        """

        if not markup or not markup.strip():
            return []
        links = self.extractor.extract_links(markup)
        matched = find_by_identifier(links, identifier)
        if not matched:
            return []

        hyperlinks = scan(markup).hyperlinks()
        located: List[Tuple[ExtractedLink, AnchorSpan]] = []
        for link in matched:
            key = _link_key(link.url, link.anchor_text)
            index = link.position - 1
            span = None
            if index < len(hyperlinks) and (hyperlinks[index].href or "") == (link.url or ""):
                span = hyperlinks[index]
            else:
                rank = sum(1 for other in links[:index] if _link_key(other.url, other.anchor_text) == key)
                candidates = [item for item in hyperlinks if _link_key(item.href, item.text) == key]
                if rank < len(candidates):
                    span = candidates[rank]
            if span is None or any(other is span for _, other in located):
                logger.debug("Could not locate link %s (%s) in markup", link.position, link.url)
                continue
            located.append((link, span))
        return _outermost(located)

    def _link_attributes(self, attributes: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        combined: Dict[str, Any] = dict(self.config.get("default_link_attributes") or {})
        combined.update(attributes or {})
        return filters.filter_attributes(combined, self.config)

    def _dialect(self, markup: str, dialect: Optional[str]) -> str:
        if dialect is None:
            return detect_dialect(markup or "")
        if dialect not in DIALECTS:
            raise ValueError(f"Unknown markup dialect: {dialect!r}")
        return dialect


def _as_identifier(identifier: Union[Identifier, Mapping[str, Any]]) -> Identifier:
    if isinstance(identifier, Identifier):
        return identifier
    return Identifier.from_dict(identifier)


def _link_key(url: Optional[str], text: str) -> Tuple[str, str]:
    return url or "", normalize_space(text)


def _outermost(located: List[Tuple[ExtractedLink, AnchorSpan]]) -> List[Tuple[ExtractedLink, AnchorSpan]]:
    # Nested links cannot be spliced independently; the outer one wins.
    kept = []
    for link, span in located:
        nested = any(
            other is not span and other.start < span.start and span.end <= other.end
            for _, other in located
        )
        if nested:
            logger.debug("Ignoring link %s nested inside another selected link", link.position)
            continue
        kept.append((link, span))
    return kept


def _splice(markup: str, edits: List[Tuple[AnchorSpan, str]]) -> str:
    for span, replacement in sorted(edits, key=lambda edit: edit[0].start, reverse=True):
        markup = markup[:span.start] + replacement + markup[span.end:]
    return markup
