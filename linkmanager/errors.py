"""Error codes returned by the link management API.

Engine errors already carry a code; the host adds the conditions that only
make sense once documents, users and locks exist. ``status_for`` maps every
code to the HTTP status the API answers with.
"""

from __future__ import annotations

from typing import Any, Dict

from django.http import JsonResponse

from .engine.errors import LinkEngineError

DOCUMENT_NOT_FOUND = 'document_not_found'
INVALID_DOCUMENT_TYPE = 'invalid_document_type'
TARGET_NOT_PUBLISHED = 'target_not_published'
PERMISSION_DENIED = 'permission_denied'
DOCUMENT_LOCKED = 'document_locked'
BATCH_LIMIT_EXCEEDED = 'batch_limit_exceeded'
VALIDATION_ERROR = 'validation_error'
NO_CHANGES_REQUESTED = 'no_changes_requested'
SELF_LINK_NOT_ALLOWED = 'self_link_not_allowed'
AUTHENTICATION_REQUIRED = 'authentication_required'

HTTP_STATUS: Dict[str, int] = {
    DOCUMENT_NOT_FOUND: 404,
    INVALID_DOCUMENT_TYPE: 400,
    TARGET_NOT_PUBLISHED: 400,
    BATCH_LIMIT_EXCEEDED: 400,
    VALIDATION_ERROR: 400,
    NO_CHANGES_REQUESTED: 400,
    SELF_LINK_NOT_ALLOWED: 400,
    AUTHENTICATION_REQUIRED: 401,
    PERMISSION_DENIED: 403,
    DOCUMENT_LOCKED: 423,
    'anchor_not_found': 400,
    'occurrence_out_of_range': 400,
    'anchor_spans_elements': 400,
    'link_not_found': 400,
    'invalid_identifier': 400,
    'unsafe_url': 400,
    'parse_failure': 400,
}


def status_for(code: str) -> int:
    return HTTP_STATUS.get(code, 500)


class LinkManagerError(LinkEngineError):
    """A request-level failure with a stable code."""

    def __init__(self, code: str, message: str, **data: Any) -> None:
        super().__init__(message, **data)
        self.code = code


def document_not_found(document_id: int) -> LinkManagerError:
    return LinkManagerError(
        DOCUMENT_NOT_FOUND,
        f'Document with ID {document_id} was not found.',
        document_id=document_id,
    )


def invalid_document_type(document_type: str, document_id: int) -> LinkManagerError:
    return LinkManagerError(
        INVALID_DOCUMENT_TYPE,
        f'Document type "{document_type}" is not supported.',
        document_type=document_type,
        document_id=document_id,
    )


def target_not_published(document_id: int, status: str) -> LinkManagerError:
    return LinkManagerError(
        TARGET_NOT_PUBLISHED,
        f'Target document {document_id} is not published (status: {status}).',
        target_document_id=document_id,
        target_status=status,
    )


def permission_denied(action: str, document_id: int | None = None) -> LinkManagerError:
    return LinkManagerError(
        PERMISSION_DENIED,
        f'You do not have permission to {action}.',
        document_id=document_id,
    )


def document_locked(document_id: int, holder: str) -> LinkManagerError:
    return LinkManagerError(
        DOCUMENT_LOCKED,
        f'Document is currently being edited by {holder}.',
        document_id=document_id,
        locked_by=holder,
    )


def batch_limit_exceeded(count: int, limit: int) -> LinkManagerError:
    return LinkManagerError(
        BATCH_LIMIT_EXCEEDED,
        f'Batch operation with {count} items exceeds maximum limit of {limit}.',
        count=count,
        limit=limit,
    )


def validation_error(errors: Dict[str, Any]) -> LinkManagerError:
    return LinkManagerError(VALIDATION_ERROR, 'The request is invalid.', errors=errors)


def no_changes_requested() -> LinkManagerError:
    return LinkManagerError(NO_CHANGES_REQUESTED, 'At least one change parameter must be provided.')


def self_link_not_allowed(document_id: int) -> LinkManagerError:
    return LinkManagerError(
        SELF_LINK_NOT_ALLOWED,
        'A document cannot link to itself.',
        document_id=document_id,
    )


def error_payload(exc: LinkEngineError) -> Dict[str, Any]:
    return {
        'code': exc.code,
        'message': exc.message,
        'data': {'status': status_for(exc.code), **exc.data},
    }


def error_response(exc: LinkEngineError) -> JsonResponse:
    return JsonResponse(error_payload(exc), status=status_for(exc.code))
