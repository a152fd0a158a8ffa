"""Interfaces the engine expects from its host application."""

from __future__ import annotations

from typing import Optional, Protocol

from .types import DocumentSummary


class PermalinkResolver(Protocol):
    def resolve_url_to_document_id(self, url: str) -> Optional[int]:
        """Return the id of the document a URL points at, if any."""

    def get_canonical_permalink(self, document_id: int) -> Optional[str]:
        """Return the absolute canonical URL of a document."""


class DocumentMetadataProvider(Protocol):
    def get_document_summary(self, document_id: int) -> Optional[DocumentSummary]:
        """Return status, title, author and terms of a document, or None."""
