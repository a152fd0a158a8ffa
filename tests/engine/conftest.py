"""Shared fixtures for link engine tests."""

from __future__ import annotations

from typing import Dict, Optional

import pytest

from linkmanager.engine.config import load_config
from linkmanager.engine.index import build_engine
from linkmanager.engine.types import DocumentSummary

SITE_URL = "https://example.com"


@pytest.fixture()
def engine_config():
    """Engine configuration for a site served from example.com."""

    return load_config(None, site_url=SITE_URL)


@pytest.fixture()
def engine(engine_config):
    return build_engine(engine_config)


class FakeSite:
    """In-memory stand-in for the host's permalink and metadata lookups."""

    def __init__(self) -> None:
        self.documents: Dict[int, DocumentSummary] = {}
        self.permalinks: Dict[int, str] = {}
        self.urls: Dict[str, int] = {}

    def add(self, document_id: int, slug: str, *, status: str = "publish", title: str | None = None) -> str:
        permalink = f"{SITE_URL}/{slug}/"
        self.documents[document_id] = make_summary(document_id, title or slug.title(), status=status)
        self.permalinks[document_id] = permalink
        self.urls[permalink] = document_id
        return permalink

    def alias(self, url: str, document_id: int) -> None:
        self.urls[url] = document_id

    def resolve_url_to_document_id(self, url: str) -> Optional[int]:
        return self.urls.get(url)

    def get_canonical_permalink(self, document_id: int) -> Optional[str]:
        return self.permalinks.get(document_id)

    def get_document_summary(self, document_id: int) -> Optional[DocumentSummary]:
        return self.documents.get(document_id)


def make_summary(document_id: int, title: str, *, status: str = "publish") -> DocumentSummary:
    return DocumentSummary(
        id=document_id,
        title=title,
        document_type="post",
        status=status,
        author={"id": 1, "name": "Editor", "slug": "editor"},
        date="2024-01-01T00:00:00+00:00",
        categories=["News"],
        tags=[],
    )


@pytest.fixture()
def site():
    return FakeSite()


@pytest.fixture()
def validating_engine(engine_config, site):
    return build_engine(engine_config, resolver=site, metadata=site)
