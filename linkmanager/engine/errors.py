"""Exceptions raised by the link engine.

Every error carries a stable ``code`` so that callers can translate it into
user-facing messages or HTTP responses without inspecting the message text.
"""

from __future__ import annotations

from typing import Any, Dict


class LinkEngineError(Exception):
    """Base class for recoverable engine failures."""

    code = "link_engine_error"

    def __init__(self, message: str, **data: Any) -> None:
        super().__init__(message)
        self.message = message
        self.data: Dict[str, Any] = data


class MarkupParseError(LinkEngineError):
    """The markup could not be parsed at all (empty or whitespace-only input)."""

    code = "parse_failure"


class InvalidIdentifierError(LinkEngineError):
    """A link identifier is missing the fields its ``by`` discriminant requires."""

    code = "invalid_identifier"


class UnsafeUrlError(LinkEngineError):
    """The URL uses a scheme that must never be emitted into markup."""

    code = "unsafe_url"

    def __init__(self, url: str) -> None:
        super().__init__("The URL is empty or uses a disallowed scheme.", url=url)
        self.url = url


class AnchorNotFoundError(LinkEngineError):
    code = "anchor_not_found"

    def __init__(self, anchor_text: str) -> None:
        super().__init__(
            f'The anchor text "{anchor_text}" was not found in the document content.',
            anchor_text=anchor_text,
        )


class OccurrenceOutOfRangeError(LinkEngineError):
    code = "occurrence_out_of_range"

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(
            f"Requested occurrence {requested} exceeds available matches ({available}).",
            requested=requested,
            available=available,
        )


class AnchorSpansElementsError(LinkEngineError):
    code = "anchor_spans_elements"

    def __init__(self, anchor_text: str) -> None:
        super().__init__(
            f'The anchor text "{anchor_text}" spans multiple HTML elements.',
            anchor_text=anchor_text,
        )


class LinkNotFoundError(LinkEngineError):
    code = "link_not_found"

    def __init__(self) -> None:
        super().__init__("No link matching the identifier was found.")
