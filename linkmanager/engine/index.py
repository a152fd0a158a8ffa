"""Coordinator exposing the link engine operations as plain-data calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from . import anchors as anchors_module
from .collaborators import DocumentMetadataProvider, PermalinkResolver
from .config import EngineConfig, load_config
from .links import LinkExtractor, find_by_identifier
from .mutator import LinkMutator, detect_dialect
from .placement import Selector
from .types import ExtractedLink, Identifier, LinkReport, MutationResult, Occurrence, ValidationIssue
from .validator import LinkValidator


@dataclass(frozen=True)
class LinkEngine:
    """One configured set of engine components.

    The engine holds no document state; every call works on the markup it
    is given and returns a fresh result.
    """

    config: EngineConfig
    extractor: LinkExtractor
    mutator: LinkMutator
    validator: Optional[LinkValidator] = None

    def find_occurrences(self, markup: str, anchor_text: str) -> List[Occurrence]:
        return anchors_module.find_occurrences(markup, anchor_text)

    def count_occurrences(self, markup: str, anchor_text: str) -> int:
        return anchors_module.count_occurrences(markup, anchor_text)

    def anchor_spans_elements(self, markup: str, anchor_text: str, occurrence: Selector = "first") -> bool:
        return anchors_module.anchor_spans_elements(markup, anchor_text, occurrence)

    def extract_links(self, markup: str) -> List[ExtractedLink]:
        return self.extractor.extract_links(markup)

    def is_internal(self, url: str) -> bool:
        return self.extractor.is_internal(url)

    def find_by_identifier(
        self,
        markup: str,
        identifier: Union[Identifier, Mapping[str, Any]],
    ) -> List[ExtractedLink]:
        if not isinstance(identifier, Identifier):
            identifier = Identifier.from_dict(identifier)
        return find_by_identifier(markup, identifier, self.extractor)

    def detect_dialect(self, markup: str) -> str:
        return detect_dialect(markup)

    def add_link(self, markup: str, anchor_text: str, url: str, **options: Any) -> MutationResult:
        return self.mutator.add_link(markup, anchor_text, url, **options)

    def update_link(self, markup: str, identifier, **options: Any) -> MutationResult:
        return self.mutator.update_link(markup, identifier, **options)

    def remove_link(self, markup: str, identifier, **options: Any) -> MutationResult:
        return self.mutator.remove_link(markup, identifier, **options)

    def validate_link(self, link: ExtractedLink) -> Optional[ValidationIssue]:
        return self._require_validator().validate_link(link)

    def validate(self, markup: str, document_id: Optional[int] = None) -> Dict[str, Any]:
        return self._require_validator().validate(markup, document_id)

    def generate_report(self, markup: str) -> LinkReport:
        return self._require_validator().generate_report(markup)

    def _require_validator(self) -> LinkValidator:
        if self.validator is None:
            raise RuntimeError("Link validation needs a permalink resolver and metadata provider.")
        return self.validator


def build_engine(
    config: EngineConfig | None = None,
    resolver: Optional[PermalinkResolver] = None,
    metadata: Optional[DocumentMetadataProvider] = None,
) -> LinkEngine:
    """Wire the engine components around one configuration."""

    engine_config = config or load_config(None)
    extractor = LinkExtractor(engine_config, resolver)
    validator = None
    if resolver is not None and metadata is not None:
        validator = LinkValidator(engine_config, resolver, metadata, extractor)
    return LinkEngine(
        config=engine_config,
        extractor=extractor,
        mutator=LinkMutator(engine_config, extractor),
        validator=validator,
    )
