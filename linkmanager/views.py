"""JSON API views for the linkmanager app.

Every view decodes its input, validates it with the matching form and
hands it to a service function. Failures are rendered as
``{"code", "message", "data"}`` payloads with the status mapped from the
error code.
"""

from __future__ import annotations

import json
import logging
from functools import wraps
from typing import Any, Callable, Dict

from django import forms
from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_GET, require_POST

from . import errors, services
from .engine.errors import LinkEngineError
from .forms import (
    AddLinkForm,
    BatchAddLinksForm,
    BatchRemoveLinksForm,
    RemoveLinkForm,
    SearchDocumentsForm,
    UpdateLinkForm,
)
from .models import LinkOperation

logger = logging.getLogger(__name__)


def api_view(view: Callable[..., Dict[str, Any]]) -> Callable[..., JsonResponse]:
    """Require a signed-in user and turn results and errors into JSON."""

    @wraps(view)
    def wrapper(request: HttpRequest, *args, **kwargs) -> JsonResponse:
        if not request.user.is_authenticated:
            exc = errors.LinkManagerError(errors.AUTHENTICATION_REQUIRED, 'Authentication credentials were not provided.')
            return errors.error_response(exc)
        try:
            payload = view(request, *args, **kwargs)
        except LinkEngineError as exc:
            logger.info('Link API request failed: %s', exc.code, extra={'code': exc.code, 'path': request.path})
            return errors.error_response(exc)
        return JsonResponse(payload)

    return wrapper


def _json_body(request: HttpRequest) -> Dict[str, Any]:
    try:
        data = json.loads(request.body or b'{}')
    except (TypeError, ValueError, UnicodeDecodeError):
        raise errors.validation_error({'__all__': ['Request body must be valid JSON.']}) from None
    if not isinstance(data, dict):
        raise errors.validation_error({'__all__': ['Request body must be a JSON object.']})
    return data


def _validated(form: forms.Form) -> Dict[str, Any]:
    if not form.is_valid():
        raise errors.validation_error(form.errors.get_json_data())
    return form.cleaned_data


@require_GET
@api_view
def document_search(request: HttpRequest) -> Dict[str, Any]:
    """Search documents that can be linked to."""

    form = SearchDocumentsForm(request.GET)
    _validated(form)
    return services.search_documents(request.user, **form.search_options())


@require_GET
@api_view
def document_detail(request: HttpRequest, document_id: int) -> Dict[str, Any]:
    return services.get_document(request.user, document_id)


@require_GET
@api_view
def links_validate(request: HttpRequest, document_id: int) -> Dict[str, Any]:
    return services.validate_links(request.user, document_id)


@require_GET
@api_view
def links_report(request: HttpRequest, document_id: int) -> Dict[str, Any]:
    return services.link_report(request.user, document_id)


@require_POST
@api_view
def link_add(request: HttpRequest) -> Dict[str, Any]:
    data = _validated(AddLinkForm(_json_body(request)))
    return services.add_link(
        request.user,
        data['source_document_id'],
        data['target_document_id'],
        data['anchor_text'],
        occurrence=data['occurrence'],
        attributes=data['attributes'],
        if_exists=data['if_exists'],
    )


@require_POST
@api_view
def link_batch_add(request: HttpRequest) -> Dict[str, Any]:
    data = _validated(BatchAddLinksForm(_json_body(request)))
    return services.batch_add_links(
        request.user,
        data['source_document_id'],
        data['links'],
        stop_on_error=data['stop_on_error'],
    )


@require_POST
@api_view
def link_update(request: HttpRequest) -> Dict[str, Any]:
    data = _validated(UpdateLinkForm(_json_body(request)))
    return services.update_link(
        request.user,
        data['source_document_id'],
        data['identifier'],
        new_target_document_id=data['new_target_document_id'],
        new_anchor_text=data['new_anchor_text'],
        new_attributes=data['new_attributes'],
        merge_attributes=data['merge_attributes'],
    )


@require_POST
@api_view
def link_remove(request: HttpRequest) -> Dict[str, Any]:
    data = _validated(RemoveLinkForm(_json_body(request)))
    return services.remove_link(
        request.user,
        data['source_document_id'],
        data['identifier'],
        action=data['action'],
    )


@require_POST
@api_view
def link_batch_remove(request: HttpRequest) -> Dict[str, Any]:
    data = _validated(BatchRemoveLinksForm(_json_body(request)))
    return services.batch_remove_links(
        request.user,
        data['source_document_id'],
        data['links'],
        action=data['action'],
        stop_on_error=data['stop_on_error'],
    )


@require_GET
@api_view
def operation_history(request: HttpRequest) -> Dict[str, Any]:
    """List the signed-in user's recent link operations."""

    operations = (
        LinkOperation.objects
        .filter(user=request.user)
        .select_related('document')
        .order_by('-created_at', '-pk')[:50]
    )
    return {
        'operations': [
            {
                'id': operation.pk,
                'document_id': operation.document_id,
                'document_title': operation.document.title,
                'operation': operation.operation,
                'changed': operation.changed,
                'revision_id': operation.revision_id,
                'result': operation.result,
                'created_at': operation.created_at.isoformat(),
            }
            for operation in operations
        ],
    }
