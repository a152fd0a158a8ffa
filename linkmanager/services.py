"""Service functions for managing the internal links of stored documents.

These functions sit between the HTTP views and the link engine. They load
documents, enforce permissions, edit locks and target rules, run the
engine against the stored body and save the result with a revision, so
they can be unit tested and reused outside the views.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import parse_qs, urlsplit

from bs4 import BeautifulSoup  # type: ignore
from django.conf import settings
from django.core.paginator import Paginator
from django.db import transaction
from django.db.models import Q

from . import errors
from .engine.config import EngineConfig, load_config
from .engine.errors import (
    AnchorNotFoundError,
    AnchorSpansElementsError,
    LinkEngineError,
    LinkNotFoundError,
    OccurrenceOutOfRangeError,
)
from .engine.index import LinkEngine, build_engine
from .engine.placement import explicit_position
from .engine.text import normalize_space
from .engine.types import DocumentSummary, Identifier, MutationResult
from .models import Document, DocumentRevision, LinkOperation, Term

logger = logging.getLogger(__name__)

EDIT_PERMISSION = 'linkmanager.change_document'
VIEW_PERMISSION = 'linkmanager.view_document'


def get_engine_config() -> EngineConfig:
    """Build the engine configuration from Django settings.

    ``LINKMANAGER_ENGINE_CONFIG`` may point at a YAML file; the site origin
    always comes from ``LINKMANAGER_SITE_URL``.
    """

    overrides: Dict[str, Any] = {'site_url': getattr(settings, 'LINKMANAGER_SITE_URL', '')}
    document_types = getattr(settings, 'LINKMANAGER_DOCUMENT_TYPES', None)
    if document_types:
        overrides['supported_document_types'] = list(document_types)
    return load_config(getattr(settings, 'LINKMANAGER_ENGINE_CONFIG', None), **overrides)


class DocumentPermalinkResolver:
    """Maps URLs on the configured site to stored documents.

    Both pretty permalinks (``/<slug>/``) and id query URLs (``?p=<id>`` or
    ``?page_id=<id>``) resolve.
    """

    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    def resolve_url_to_document_id(self, url: str) -> Optional[int]:
        try:
            parts = urlsplit(url)
        except ValueError:
            return None
        host = (parts.hostname or '').lower()
        if host and host != self.config.site_host:
            return None

        query = parse_qs(parts.query)
        for key in ('p', 'page_id'):
            values = query.get(key)
            if values and values[-1].isdigit():
                document_id = int(values[-1])
                return document_id if Document.objects.filter(pk=document_id).exists() else None

        segments = [segment for segment in parts.path.split('/') if segment]
        if not segments:
            return None
        return (
            Document.objects
            .filter(slug=segments[-1])
            .values_list('pk', flat=True)
            .first()
        )

    def get_canonical_permalink(self, document_id: int) -> Optional[str]:
        document = Document.objects.filter(pk=document_id).first()
        return document.permalink if document else None


class DocumentMetadata:
    """Supplies target summaries for link reports."""

    def get_document_summary(self, document_id: int) -> Optional[DocumentSummary]:
        document = (
            Document.objects
            .select_related('author')
            .prefetch_related('terms')
            .filter(pk=document_id)
            .first()
        )
        if document is None:
            return None
        return DocumentSummary(
            id=document.pk,
            title=document.title,
            document_type=document.document_type,
            status=document.status,
            author=_author_data(document),
            date=document.published_at.isoformat() if document.published_at else None,
            categories=[term['name'] for term in document.terms_for(Term.CATEGORY)],
            tags=[term['name'] for term in document.terms_for(Term.TAG)],
        )


def get_engine(config: EngineConfig | None = None) -> LinkEngine:
    engine_config = config or get_engine_config()
    return build_engine(engine_config, DocumentPermalinkResolver(engine_config), DocumentMetadata())


def format_document(document: Document, engine: LinkEngine | None = None) -> Dict[str, Any]:
    engine = engine or get_engine()
    return {
        'id': document.pk,
        'title': document.title,
        'content': document.body,
        'excerpt': document.excerpt,
        'document_type': document.document_type,
        'status': document.status,
        'permalink': document.permalink,
        'slug': document.slug,
        'editor_type': engine.detect_dialect(document.body),
        'author': _author_data(document),
        'date': document.published_at.isoformat() if document.published_at else None,
        'modified': document.updated_at.isoformat() if document.updated_at else None,
        'categories': document.terms_for(Term.CATEGORY),
        'tags': document.terms_for(Term.TAG),
    }


def get_document(user, document_id: int) -> Dict[str, Any]:
    engine = get_engine()
    document = _load_document(document_id)
    _require_permission(user, VIEW_PERMISSION, 'read this document', document_id)
    _require_supported(document, engine.config)
    return format_document(document, engine)


def search_documents(
    user,
    *,
    keyword: str = '',
    search_scope: str = 'all',
    document_type: Optional[str] = None,
    status: str = 'publish',
    category: Sequence[str] = (),
    tag: Sequence[str] = (),
    page: int = 1,
    per_page: int = 20,
) -> Dict[str, Any]:
    """Search supported documents, paginated like the document listing API."""

    _require_permission(user, VIEW_PERMISSION, 'search documents')
    engine = get_engine()
    supported = engine.config.names('supported_document_types')
    types = [document_type] if document_type in supported else supported

    queryset = (
        Document.objects
        .filter(document_type__in=types, status=status)
        .select_related('author')
        .prefetch_related('terms')
        .order_by('-published_at', '-pk')
    )
    if keyword:
        if search_scope == 'title':
            queryset = queryset.filter(title__icontains=keyword)
        else:
            queryset = queryset.filter(
                Q(title__icontains=keyword) | Q(body__icontains=keyword) | Q(excerpt__icontains=keyword)
            )
    if category:
        queryset = queryset.filter(terms__taxonomy=Term.CATEGORY, terms__slug__in=list(category))
    if tag:
        queryset = queryset.filter(terms__taxonomy=Term.TAG, terms__slug__in=list(tag))
    queryset = queryset.distinct()

    per_page = max(1, min(per_page, 100))
    paginator = Paginator(queryset, per_page)
    current = paginator.get_page(page)

    results = []
    for document in current.object_list:
        results.append({
            'id': document.pk,
            'title': document.title,
            'document_type': document.document_type,
            'permalink': document.permalink,
            'excerpt': document.excerpt or _excerpt(document.body),
            'author': _author_data(document),
            'date': document.published_at.isoformat() if document.published_at else None,
            'categories': document.terms_for(Term.CATEGORY),
            'tags': document.terms_for(Term.TAG),
        })
    return {
        'results': results,
        'pagination': {
            'total': paginator.count,
            'total_pages': paginator.num_pages,
            'current_page': current.number,
            'per_page': per_page,
        },
    }


@transaction.atomic
def add_link(
    user,
    source_document_id: int,
    target_document_id: int,
    anchor_text: str,
    *,
    occurrence: Any = 'first',
    attributes: Optional[Mapping[str, Any]] = None,
    if_exists: str = 'skip',
) -> Dict[str, Any]:
    """Link anchor text in the source document to the target document."""

    engine = get_engine()
    source = _editable_document(user, source_document_id, engine.config)
    target = _link_target(source, target_document_id, engine.config)
    occurrences = _check_anchor(engine, source.body, anchor_text, occurrence)

    result = engine.add_link(
        source.body,
        anchor_text,
        target.permalink,
        attributes=attributes,
        occurrence=occurrence,
        if_exists=if_exists,
    )
    payload = {
        'success': result.links_added > 0 or result.links_replaced > 0,
        'source_document_id': source.pk,
        'target_document_id': target.pk,
        'target_permalink': target.permalink,
        'anchor_text': anchor_text,
        'occurrences_found': len(occurrences),
        'occurrences_linked': sum(1 for item in occurrences if item.is_linked),
        **result.to_dict(),
    }
    _commit(
        user,
        source,
        result,
        LinkOperation.ADD,
        {
            'target_document_id': target.pk,
            'anchor_text': anchor_text,
            'occurrence': occurrence,
            'attributes': dict(attributes or {}),
            'if_exists': if_exists,
        },
        payload,
    )
    return payload


@transaction.atomic
def batch_add_links(
    user,
    source_document_id: int,
    links: Sequence[Mapping[str, Any]],
    *,
    stop_on_error: bool = False,
) -> Dict[str, Any]:
    """Apply several add-link requests to one document and save once.

    Targets are validated up front. With ``stop_on_error`` the first failure
    raises and nothing is saved; otherwise failures are reported per item.
    """

    engine = get_engine()
    limit = int(engine.config.get('max_batch_size', 50))
    if len(links) > limit:
        raise errors.batch_limit_exceeded(len(links), limit)

    source = _editable_document(user, source_document_id, engine.config)

    target_errors: Dict[int, LinkEngineError] = {}
    targets: Dict[int, Document] = {}
    for index, item in enumerate(links):
        try:
            targets[index] = _link_target(source, item['target_document_id'], engine.config)
        except LinkEngineError as exc:
            target_errors[index] = exc
    if stop_on_error and target_errors:
        raise target_errors[min(target_errors)]

    content = source.body
    combined = MutationResult(content=content)
    results: List[Dict[str, Any]] = []
    totals = {'added': 0, 'skipped': 0, 'failed': 0}

    for index, item in enumerate(links):
        entry = {
            'index': index,
            'anchor_text': item['anchor_text'],
            'target_document_id': item['target_document_id'],
        }
        failure = target_errors.get(index)
        if failure is None:
            try:
                _check_anchor(engine, content, item['anchor_text'], item.get('occurrence', 'first'))
                result = engine.add_link(
                    content,
                    item['anchor_text'],
                    targets[index].permalink,
                    attributes=item.get('attributes'),
                    occurrence=item.get('occurrence', 'first'),
                    if_exists=item.get('if_exists', 'skip'),
                )
            except LinkEngineError as exc:
                failure = exc

        if failure is not None:
            if stop_on_error:
                raise failure
            results.append({**entry, 'status': 'failed', 'code': failure.code, 'reason': failure.message})
            totals['failed'] += 1
            continue

        content = result.content
        combined.links_added += result.links_added
        combined.links_replaced += result.links_replaced
        if result.links_added or result.links_replaced:
            results.append({**entry, 'status': 'added'})
            totals['added'] += 1
        else:
            results.append({**entry, 'status': 'skipped', 'reason': 'already_linked'})
            totals['skipped'] += 1

    combined.content = content
    payload = {
        'success': totals['added'] > 0 or totals['skipped'] > 0,
        'source_document_id': source.pk,
        'total_requested': len(links),
        'total_added': totals['added'],
        'total_skipped': totals['skipped'],
        'total_failed': totals['failed'],
        'results': results,
    }
    _commit(user, source, combined, LinkOperation.BATCH_ADD, {'links': _plain(links)}, payload)
    return payload


@transaction.atomic
def update_link(
    user,
    source_document_id: int,
    identifier: Mapping[str, Any],
    *,
    new_target_document_id: Optional[int] = None,
    new_anchor_text: Optional[str] = None,
    new_attributes: Optional[Mapping[str, Any]] = None,
    merge_attributes: bool = True,
) -> Dict[str, Any]:
    if new_target_document_id is None and new_anchor_text is None and new_attributes is None:
        raise errors.no_changes_requested()

    engine = get_engine()
    link_identifier = Identifier.from_dict(identifier)
    source = _editable_document(user, source_document_id, engine.config)

    new_url = None
    if new_target_document_id is not None:
        new_url = _link_target(source, new_target_document_id, engine.config).permalink

    if not engine.find_by_identifier(source.body, link_identifier):
        raise LinkNotFoundError()

    result = engine.update_link(
        source.body,
        link_identifier,
        new_url=new_url,
        new_anchor_text=new_anchor_text,
        new_attributes=new_attributes,
        merge_attributes=merge_attributes,
    )
    payload = {
        'success': result.links_updated > 0,
        'source_document_id': source.pk,
        'links_updated': result.links_updated,
        'changes': [change.to_dict() for change in result.changes],
    }
    _commit(
        user,
        source,
        result,
        LinkOperation.UPDATE,
        {
            'identifier': link_identifier.to_dict(),
            'new_target_document_id': new_target_document_id,
            'new_anchor_text': new_anchor_text,
            'new_attributes': dict(new_attributes) if new_attributes is not None else None,
            'merge_attributes': merge_attributes,
        },
        payload,
    )
    return payload


@transaction.atomic
def remove_link(
    user,
    source_document_id: int,
    identifier: Mapping[str, Any],
    *,
    action: str = 'unlink',
) -> Dict[str, Any]:
    engine = get_engine()
    link_identifier = Identifier.from_dict(identifier)
    source = _editable_document(user, source_document_id, engine.config)

    result = engine.remove_link(source.body, link_identifier, action=action)
    if not result.links_removed:
        raise LinkNotFoundError()

    payload = {
        'success': True,
        'source_document_id': source.pk,
        'links_removed': result.links_removed,
        'removed_links': result.to_dict()['removed_links'],
    }
    _commit(
        user,
        source,
        result,
        LinkOperation.REMOVE,
        {'identifier': link_identifier.to_dict(), 'action': action},
        payload,
    )
    return payload


@transaction.atomic
def batch_remove_links(
    user,
    source_document_id: int,
    identifiers: Sequence[Mapping[str, Any]],
    *,
    action: str = 'unlink',
    stop_on_error: bool = False,
) -> Dict[str, Any]:
    """Remove several links from one document and save once.

    Each item is an identifier, optionally carrying its own ``action``.
    """

    engine = get_engine()
    limit = int(engine.config.get('max_batch_size', 50))
    if len(identifiers) > limit:
        raise errors.batch_limit_exceeded(len(identifiers), limit)

    source = _editable_document(user, source_document_id, engine.config)
    content = source.body
    combined = MutationResult(content=content)
    results: List[Dict[str, Any]] = []

    for index, item in enumerate(identifiers):
        item_action = item.get('action') or action
        try:
            result = engine.remove_link(content, Identifier.from_dict(item), action=item_action)
            if not result.links_removed:
                raise LinkNotFoundError()
        except LinkEngineError as exc:
            if stop_on_error:
                raise
            results.append({'index': index, 'status': 'failed', 'code': exc.code, 'reason': exc.message})
            continue
        content = result.content
        combined.links_removed += result.links_removed
        combined.removed_links.extend(result.removed_links)
        results.append({'index': index, 'status': 'removed', 'links_removed': result.links_removed})

    combined.content = content
    removed_total = sum(1 for entry in results if entry['status'] == 'removed')
    payload = {
        'success': removed_total > 0,
        'source_document_id': source.pk,
        'total_requested': len(identifiers),
        'total_removed': removed_total,
        'total_failed': len(results) - removed_total,
        'results': results,
    }
    _commit(
        user,
        source,
        combined,
        LinkOperation.BATCH_REMOVE,
        {'links': _plain(identifiers), 'action': action},
        payload,
    )
    return payload


def validate_links(user, document_id: int) -> Dict[str, Any]:
    engine = get_engine()
    document = _load_document(document_id)
    _require_permission(user, VIEW_PERMISSION, 'read this document', document_id)
    _require_supported(document, engine.config)
    return engine.validate(document.body, document.pk)


def link_report(user, document_id: int) -> Dict[str, Any]:
    engine = get_engine()
    document = _load_document(document_id)
    _require_permission(user, VIEW_PERMISSION, 'read this document', document_id)
    _require_supported(document, engine.config)
    report = engine.generate_report(document.body)
    return {'document_id': document.pk, 'title': document.title, **report.to_dict()}


def _load_document(document_id: int, *, for_update: bool = False) -> Document:
    queryset = Document.objects.select_related('author', 'locked_by')
    if for_update:
        queryset = queryset.select_for_update(of=('self',))
    document = queryset.filter(pk=document_id).first()
    if document is None:
        raise errors.document_not_found(document_id)
    return document


def _editable_document(user, document_id: int, config: EngineConfig) -> Document:
    document = _load_document(document_id, for_update=True)
    _require_permission(user, EDIT_PERMISSION, 'edit this document', document_id)
    _require_supported(document, config)
    holder = document.lock_holder(user)
    if holder is not None:
        name = holder.get_full_name() or holder.get_username()
        raise errors.document_locked(document.pk, name)
    return document


def _link_target(source: Document, target_document_id: int, config: EngineConfig) -> Document:
    target = Document.objects.filter(pk=target_document_id).first()
    if target is None:
        raise errors.document_not_found(target_document_id)
    _require_supported(target, config)
    if target.status.lower() not in config.names('published_statuses'):
        raise errors.target_not_published(target.pk, target.status)
    if target.pk == source.pk:
        raise errors.self_link_not_allowed(source.pk)
    return target


def _check_anchor(engine: LinkEngine, body: str, anchor_text: str, occurrence: Any):
    """Anchor preconditions for add-link; returns the occurrences found."""

    occurrences = engine.find_occurrences(body, anchor_text)
    if not occurrences:
        if engine.anchor_spans_elements(body, anchor_text, 'first'):
            raise AnchorSpansElementsError(anchor_text)
        raise AnchorNotFoundError(anchor_text)
    requested = explicit_position(occurrence)
    if requested is not None and requested > len(occurrences):
        raise OccurrenceOutOfRangeError(requested, len(occurrences))
    if engine.anchor_spans_elements(body, anchor_text, occurrence):
        raise AnchorSpansElementsError(anchor_text)
    return occurrences


def _require_permission(user, permission: str, action: str, document_id: int | None = None) -> None:
    if user is None or not user.has_perm(permission):
        raise errors.permission_denied(action, document_id)


def _require_supported(document: Document, config: EngineConfig) -> None:
    if document.document_type.lower() not in config.names('supported_document_types'):
        raise errors.invalid_document_type(document.document_type, document.pk)


def _commit(
    user,
    document: Document,
    result: MutationResult,
    operation: str,
    request_payload: Dict[str, Any],
    payload: Dict[str, Any],
) -> None:
    """Save the new body (one revision) and record the operation."""

    revision = None
    changed = result.content != document.body
    if changed:
        revision = DocumentRevision.objects.create(
            document=document,
            body=document.body,
            author=user,
            reason=f'linkmanager:{operation}',
        )
        document.body = result.content
        document.save(update_fields=['body', 'updated_at'])
        logger.info(
            'Saved link edit on document %s',
            document.pk,
            extra={
                'document_id': document.pk,
                'operation': operation,
                'links_added': result.links_added,
                'links_replaced': result.links_replaced,
                'links_updated': result.links_updated,
                'links_removed': result.links_removed,
                'revision_id': revision.pk,
            },
        )
    else:
        logger.info('Link edit on document %s left the body unchanged', document.pk)

    LinkOperation.objects.create(
        user=user,
        document=document,
        operation=operation,
        request_payload=request_payload,
        result=payload,
        changed=changed,
        revision=revision,
    )


def _author_data(document: Document) -> Dict[str, Any]:
    author = document.author
    if author is None:
        return {'id': None, 'name': 'Unknown', 'slug': ''}
    return {
        'id': author.pk,
        'name': author.get_full_name() or author.get_username(),
        'slug': author.get_username(),
    }


def _excerpt(body: str, words: int = 55) -> str:
    text = normalize_space(BeautifulSoup(body or '', 'html.parser').get_text(' '))
    parts = text.split(' ')
    if len(parts) <= words:
        return text
    return ' '.join(parts[:words]) + '...'


def _plain(items: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [dict(item) for item in items]
