"""Link health checks: broken, unpublished and drifted internal links."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .collaborators import DocumentMetadataProvider, PermalinkResolver
from .config import EngineConfig
from .links import LinkExtractor
from .text import normalize_permalink
from .types import ExtractedLink, LinkReport, ValidationIssue

BROKEN = "broken"
UNPUBLISHED = "unpublished"
PERMALINK_MISMATCH = "permalink_mismatch"
ISSUE_TYPES = (BROKEN, UNPUBLISHED, PERMALINK_MISMATCH)


class LinkValidator:
    """Classifies the internal links of a document body."""

    def __init__(
        self,
        config: EngineConfig,
        resolver: PermalinkResolver,
        metadata: DocumentMetadataProvider,
        extractor: Optional[LinkExtractor] = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.metadata = metadata
        self.extractor = extractor or LinkExtractor(config, resolver)

    def validate_link(self, link: ExtractedLink) -> Optional[ValidationIssue]:
        """Return the first problem found for link, or None when it is healthy.

        Checks run in order: the URL must resolve to a document, the
        document must exist and be published, and the URL must match the
        document's canonical permalink after normalization.
        """

        document_id = self.extractor.resolve_document_id(link.url)
        if document_id is None:
            return self._issue(BROKEN, link, "Document does not exist")

        summary = self.metadata.get_document_summary(document_id)
        if summary is None:
            return self._issue(BROKEN, link, "Document does not exist", target_id=document_id)

        published = self.config.names("published_statuses")
        if summary.status.lower() not in published:
            return self._issue(
                UNPUBLISHED,
                link,
                "Document is not published",
                target_id=document_id,
                target_status=summary.status,
            )

        permalink = self.resolver.get_canonical_permalink(document_id)
        if permalink and normalize_permalink(permalink) != normalize_permalink(self.extractor.absolute_url(link.url)):
            return self._issue(
                PERMALINK_MISMATCH,
                link,
                "URL does not match current permalink",
                target_id=document_id,
                current_permalink=permalink,
            )
        return None

    def validate(self, markup: str, document_id: Optional[int] = None) -> Dict[str, Any]:
        internal = [link for link in self.extractor.extract_links(markup) if link.is_internal]
        summary = {"valid": 0, BROKEN: 0, UNPUBLISHED: 0, PERMALINK_MISMATCH: 0}
        issues: List[Dict[str, Any]] = []
        for link in internal:
            issue = self.validate_link(link)
            if issue is None:
                summary["valid"] += 1
                continue
            summary[issue.type] += 1
            issues.append(issue.to_dict())
        return {
            "document_id": document_id,
            "total_internal_links": len(internal),
            "validation_summary": summary,
            "issues": issues,
        }

    def generate_report(self, markup: str) -> LinkReport:
        report = LinkReport()
        for link in self.extractor.extract_links(markup):
            if "nofollow" in link.rel_tokens:
                report.links_with_nofollow += 1

            if not link.is_internal:
                report.external.append(_link_entry(link))
                continue

            issue = self.validate_link(link)
            if issue is not None:
                getattr(report, issue.type).append(issue.to_dict())
                continue

            entry = _link_entry(link)
            document_id = self.extractor.resolve_document_id(link.url)
            summary = self.metadata.get_document_summary(document_id) if document_id else None
            if summary is not None:
                entry["target"] = summary.to_dict()
            report.valid.append(entry)
        return report

    @staticmethod
    def _issue(kind: str, link: ExtractedLink, reason: str, **detail: Any) -> ValidationIssue:
        return ValidationIssue(
            type=kind,
            position=link.position,
            anchor_text=link.anchor_text,
            url=link.url,
            reason=reason,
            **detail,
        )


def _link_entry(link: ExtractedLink) -> Dict[str, Any]:
    return {
        "position": link.position,
        "anchor_text": link.anchor_text,
        "url": link.url,
        "attributes": dict(link.attributes),
    }
