"""Extracting hyperlinks and resolving link identifiers."""

from __future__ import annotations

from typing import List, Optional, Sequence, Union
from urllib.parse import urlsplit

from . import markup as markup_module
from .collaborators import PermalinkResolver
from .config import EngineConfig
from .errors import MarkupParseError
from .text import absolutize, is_root_relative, same_text
from .types import ExtractedLink, Identifier


class LinkExtractor:
    """Lists the hyperlinks of a document and classifies them.

    The site origin comes from the injected configuration; the resolver is
    only needed for :meth:`resolve_document_id`.
    """

    def __init__(self, config: EngineConfig, resolver: Optional[PermalinkResolver] = None) -> None:
        self.config = config
        self.resolver = resolver

    def extract_links(self, markup: str) -> List[ExtractedLink]:
        if not markup or not markup.strip():
            return []
        try:
            root = markup_module.parse(markup)
        except MarkupParseError:
            return []

        links: List[ExtractedLink] = []
        for anchor in root.find_all("a", href=True):
            url = anchor["href"]
            attributes = {key: _attribute_text(value) for key, value in anchor.attrs.items() if key != "href"}
            links.append(
                ExtractedLink(
                    position=len(links) + 1,
                    anchor_text=anchor.get_text(),
                    url=url,
                    is_internal=self.is_internal(url),
                    attributes=attributes,
                )
            )
        return links

    def is_internal(self, url: str) -> bool:
        """Root-relative paths and URLs on the site host are internal."""

        value = (url or "").strip()
        if is_root_relative(value):
            return True
        try:
            host = urlsplit(value).hostname
        except ValueError:
            return False
        if not host:
            return False
        return host.lower() == self.config.site_host

    def absolute_url(self, url: str) -> str:
        return absolutize((url or "").strip(), self.config.site_url)

    def resolve_document_id(self, url: str) -> Optional[int]:
        if self.resolver is None or not url:
            return None
        document_id = self.resolver.resolve_url_to_document_id(self.absolute_url(url))
        return document_id or None


def find_by_identifier(
    links: Union[str, Sequence[ExtractedLink]],
    identifier: Identifier,
    extractor: Optional[LinkExtractor] = None,
) -> List[ExtractedLink]:
    """Return the links an identifier points at (usually zero or one).

    ``links`` may be raw markup, in which case an extractor is required.
    """

    if isinstance(links, str):
        if extractor is None:
            raise ValueError("An extractor is required to search raw markup.")
        links = extractor.extract_links(links)

    if identifier.by == "url":
        return [link for link in links if link.url == identifier.url]

    if identifier.by == "anchor":
        seen = 0
        for link in links:
            if same_text(link.anchor_text, identifier.anchor_text or ""):
                seen += 1
                if seen == identifier.occurrence:
                    return [link]
        return []

    index = identifier.index or 0
    if 1 <= index <= len(links):
        return [links[index - 1]]
    return []


def _attribute_text(value) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return "" if value is None else str(value)
