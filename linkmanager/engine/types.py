"""Typed data structures shared by the link engine.

All values are request-scoped: they are computed from a document body that
the caller supplies and never hold state between calls.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import InvalidIdentifierError

IDENTIFIER_KINDS = ("url", "anchor", "index")


@dataclass(frozen=True)
class Occurrence:
    """A case-insensitive match of anchor text inside one text node.

    ``node`` is the BeautifulSoup string the match was found in. It belongs
    to the parse that produced it and is only meaningful until that tree is
    discarded; never keep it across calls or compare it with nodes from
    another parse.
    """

    position: int
    is_linked: bool
    existing_url: Optional[str]
    char_offset: int
    text: str
    node: Any = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "is_linked": self.is_linked,
            "existing_url": self.existing_url,
            "char_offset": self.char_offset,
            "text": self.text,
        }


@dataclass(frozen=True)
class ExtractedLink:
    """A hyperlink found in a document body."""

    position: int
    anchor_text: str
    url: str
    is_internal: bool
    attributes: Dict[str, str] = field(default_factory=dict)

    @property
    def rel_tokens(self) -> List[str]:
        return [token.lower() for token in self.attributes.get("rel", "").split()]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Identifier:
    """How a caller points at existing links: by url, anchor text or index."""

    by: str
    url: Optional[str] = None
    anchor_text: Optional[str] = None
    occurrence: int = 1
    index: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Identifier":
        """Validate a plain identifier mapping and build an ``Identifier``."""

        if not isinstance(data, Mapping):
            raise InvalidIdentifierError("Link identifier object is malformed.")
        by = str(data.get("by") or "").strip().lower()
        if by not in IDENTIFIER_KINDS:
            raise InvalidIdentifierError(
                "Link identifier must specify 'by' as one of url, anchor or index.",
                by=data.get("by"),
            )

        if by == "url":
            url = data.get("url")
            if not isinstance(url, str) or not url.strip():
                raise InvalidIdentifierError("Identifier by url requires a non-empty 'url'.")
            return cls(by=by, url=url)

        if by == "anchor":
            anchor_text = data.get("anchor_text", data.get("anchor"))
            if not isinstance(anchor_text, str) or not anchor_text.strip():
                raise InvalidIdentifierError(
                    "Identifier by anchor requires a non-empty 'anchor_text'."
                )
            occurrence = _positive_int(data.get("occurrence", 1), "occurrence")
            return cls(by=by, anchor_text=anchor_text, occurrence=occurrence)

        return cls(by=by, index=_positive_int(data.get("index"), "index"))

    def to_dict(self) -> Dict[str, Any]:
        if self.by == "url":
            return {"by": "url", "url": self.url}
        if self.by == "anchor":
            return {"by": "anchor", "anchor_text": self.anchor_text, "occurrence": self.occurrence}
        return {"by": "index", "index": self.index}


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidIdentifierError(f"Identifier '{name}' must be a positive integer.")
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidIdentifierError(f"Identifier '{name}' must be a positive integer.") from None
    if number < 1:
        raise InvalidIdentifierError(f"Identifier '{name}' must be a positive integer.")
    return number


@dataclass(frozen=True)
class SkippedOccurrence:
    occurrence: int
    reason: str
    existing_url: Optional[str]


@dataclass(frozen=True)
class ReplacedLink:
    occurrence: int
    old_url: Optional[str]


@dataclass(frozen=True)
class LinkChange:
    """Per-link diff produced by an update."""

    position: int
    target: Optional[Tuple[str, str]] = None
    anchor: Optional[Tuple[str, str]] = None
    attributes_added: Dict[str, str] = field(default_factory=dict)
    attributes_removed: List[str] = field(default_factory=list)
    attributes_changed: Dict[str, Tuple[str, str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"position": self.position}
        if self.target is not None:
            payload["target"] = {"old": self.target[0], "new": self.target[1]}
        if self.anchor is not None:
            payload["anchor"] = {"old": self.anchor[0], "new": self.anchor[1]}
        if self.attributes_added or self.attributes_removed or self.attributes_changed:
            payload["attributes"] = {
                "added": dict(self.attributes_added),
                "removed": list(self.attributes_removed),
            }
            if self.attributes_changed:
                payload["attributes"]["changed"] = {
                    key: {"old": old, "new": new} for key, (old, new) in self.attributes_changed.items()
                }
        return payload


@dataclass(frozen=True)
class RemovedLink:
    anchor_text: str
    target_url: str
    position: int


@dataclass
class MutationResult:
    """Outcome of add, update and remove operations."""

    content: str
    links_added: int = 0
    links_replaced: int = 0
    links_updated: int = 0
    links_removed: int = 0
    skipped: List[SkippedOccurrence] = field(default_factory=list)
    replaced: List[ReplacedLink] = field(default_factory=list)
    changes: List[LinkChange] = field(default_factory=list)
    removed_links: List[RemovedLink] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.links_added or self.links_replaced or self.links_updated or self.links_removed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "links_added": self.links_added,
            "links_replaced": self.links_replaced,
            "links_updated": self.links_updated,
            "links_removed": self.links_removed,
            "skipped": [asdict(item) for item in self.skipped],
            "replaced": [asdict(item) for item in self.replaced],
            "changes": [change.to_dict() for change in self.changes],
            "removed_links": [asdict(item) for item in self.removed_links],
        }


@dataclass(frozen=True)
class ValidationIssue:
    """One problem found for one internal link."""

    type: str
    position: int
    anchor_text: str
    url: str
    reason: str
    target_id: Optional[int] = None
    target_status: Optional[str] = None
    current_permalink: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class DocumentSummary:
    """Metadata describing a link target, supplied by the host application."""

    id: int
    title: str
    document_type: str
    status: str
    author: Dict[str, Any] = field(default_factory=dict)
    date: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LinkReport:
    """Aggregate link health report for one document."""

    valid: List[Dict[str, Any]] = field(default_factory=list)
    broken: List[Dict[str, Any]] = field(default_factory=list)
    unpublished: List[Dict[str, Any]] = field(default_factory=list)
    permalink_mismatch: List[Dict[str, Any]] = field(default_factory=list)
    external: List[Dict[str, Any]] = field(default_factory=list)
    links_with_nofollow: int = 0

    @property
    def internal_count(self) -> int:
        return len(self.valid) + len(self.broken) + len(self.unpublished) + len(self.permalink_mismatch)

    def summary(self) -> Dict[str, int]:
        return {
            "total_links": self.internal_count + len(self.external),
            "internal_links": self.internal_count,
            "external_links": len(self.external),
            "valid_links": len(self.valid),
            "broken_links": len(self.broken),
            "unpublished_links": len(self.unpublished),
            "permalink_mismatches": len(self.permalink_mismatch),
            "links_with_nofollow": self.links_with_nofollow,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "internal_links": {
                "valid": list(self.valid),
                "broken": list(self.broken),
                "unpublished": list(self.unpublished),
                "permalink_mismatch": list(self.permalink_mismatch),
            },
            "external_links": list(self.external),
        }


@dataclass
class Block:
    """A node of a block-structured document.

    ``segments`` holds the literal markup between child blocks in order; a
    ``None`` entry marks where the next child block sits. ``raw_open`` and
    ``raw_close`` keep the delimiter comments exactly as they appeared so a
    parsed document serializes back byte for byte. Freeform top-level markup
    is a block whose ``name`` is ``None``.
    """

    name: Optional[str]
    attrs: Dict[str, Any] = field(default_factory=dict)
    inner_markup: str = ""
    segments: List[Optional[str]] = field(default_factory=list)
    children: List["Block"] = field(default_factory=list)
    raw_open: str = ""
    raw_close: str = ""

    def literals(self) -> List[str]:
        return [segment for segment in self.segments if segment is not None]

    def refresh_inner_markup(self) -> None:
        self.inner_markup = "".join(self.literals())
