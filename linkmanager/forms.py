"""Forms validating link management API requests.

Each form mirrors the input shape of one API operation. Views bind them to
the decoded JSON body; nested values (identifiers, attribute maps, batch
items) arrive as Python objects through ``JSONField``.
"""

from __future__ import annotations

from typing import Any

from django import forms

from .engine.errors import InvalidIdentifierError
from .engine.placement import is_valid_selector
from .engine.types import Identifier

IF_EXISTS_CHOICES = [('skip', 'Skip linked occurrences'), ('replace', 'Replace existing links')]
ACTION_CHOICES = [('unlink', 'Keep the anchor text'), ('delete', 'Delete link and text')]
SEARCH_SCOPE_CHOICES = [('all', 'Title and content'), ('title', 'Title only')]


def clean_occurrence_value(value: Any) -> Any:
    """Normalise an occurrence selector to a keyword or a positive int."""

    if value in (None, ''):
        return 'first'
    if not is_valid_selector(value):
        raise forms.ValidationError(
            'Occurrence must be "first", "last", "all" or a positive integer.'
        )
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, str):
        return value.strip().lower()
    return value


def clean_attributes_value(value: Any) -> dict[str, str] | None:
    if value in (None, ''):
        return None
    if not isinstance(value, dict):
        raise forms.ValidationError('Attributes must be an object of name/value pairs.')
    cleaned: dict[str, str] = {}
    for name, item in value.items():
        if isinstance(item, (dict, list)):
            raise forms.ValidationError(f'Attribute "{name}" must have a scalar value.')
        cleaned[str(name)] = '' if item is None else str(item)
    return cleaned


def clean_identifier_value(value: Any) -> dict[str, Any]:
    try:
        return Identifier.from_dict(value).to_dict()
    except InvalidIdentifierError as exc:
        raise forms.ValidationError(exc.message) from exc


class AddLinkForm(forms.Form):
    """Link one anchor text occurrence to a target document."""

    source_document_id = forms.IntegerField(min_value=1)
    target_document_id = forms.IntegerField(min_value=1)
    anchor_text = forms.CharField(max_length=500)
    occurrence = forms.CharField(max_length=20, required=False)
    attributes = forms.JSONField(required=False)
    if_exists = forms.ChoiceField(choices=IF_EXISTS_CHOICES, required=False)

    def clean_occurrence(self) -> Any:
        return clean_occurrence_value(self.cleaned_data.get('occurrence'))

    def clean_attributes(self) -> dict[str, str] | None:
        return clean_attributes_value(self.cleaned_data.get('attributes'))

    def clean_if_exists(self) -> str:
        return self.cleaned_data.get('if_exists') or 'skip'


class BatchAddLinksForm(forms.Form):
    """Several add-link requests against one source document."""

    source_document_id = forms.IntegerField(min_value=1)
    links = forms.JSONField()
    stop_on_error = forms.BooleanField(required=False)

    def clean_links(self) -> list[dict[str, Any]]:
        raw_links = self.cleaned_data.get('links')
        if not isinstance(raw_links, list) or not raw_links:
            raise forms.ValidationError('Links must be a non-empty list.')

        cleaned: list[dict[str, Any]] = []
        for index, item in enumerate(raw_links):
            if not isinstance(item, dict):
                raise forms.ValidationError(f'Link {index} must be an object.')
            anchor_text = item.get('anchor_text')
            if not isinstance(anchor_text, str) or not anchor_text.strip():
                raise forms.ValidationError(f'Link {index} is missing its anchor text.')
            target = item.get('target_document_id')
            if isinstance(target, bool) or not isinstance(target, int) or target < 1:
                raise forms.ValidationError(f'Link {index} needs a positive target_document_id.')
            if_exists = item.get('if_exists') or 'skip'
            if if_exists not in dict(IF_EXISTS_CHOICES):
                raise forms.ValidationError(f'Link {index} has an invalid if_exists policy.')
            try:
                occurrence = clean_occurrence_value(item.get('occurrence'))
                attributes = clean_attributes_value(item.get('attributes'))
            except forms.ValidationError as exc:
                raise forms.ValidationError(f'Link {index}: {exc.messages[0]}') from exc
            cleaned.append({
                'anchor_text': anchor_text,
                'target_document_id': target,
                'occurrence': occurrence,
                'attributes': attributes,
                'if_exists': if_exists,
            })
        return cleaned


class UpdateLinkForm(forms.Form):
    """Change the target, text or attributes of existing links."""

    source_document_id = forms.IntegerField(min_value=1)
    identifier = forms.JSONField()
    new_target_document_id = forms.IntegerField(min_value=1, required=False)
    new_anchor_text = forms.CharField(max_length=500, required=False, empty_value=None, strip=False)
    new_attributes = forms.JSONField(required=False)
    merge_attributes = forms.NullBooleanField(required=False)

    def clean_identifier(self) -> dict[str, Any]:
        return clean_identifier_value(self.cleaned_data.get('identifier'))

    def clean_new_attributes(self) -> dict[str, str] | None:
        return clean_attributes_value(self.cleaned_data.get('new_attributes'))

    def clean_merge_attributes(self) -> bool:
        value = self.cleaned_data.get('merge_attributes')
        return True if value is None else value


class RemoveLinkForm(forms.Form):
    source_document_id = forms.IntegerField(min_value=1)
    identifier = forms.JSONField()
    action = forms.ChoiceField(choices=ACTION_CHOICES, required=False)

    def clean_identifier(self) -> dict[str, Any]:
        return clean_identifier_value(self.cleaned_data.get('identifier'))

    def clean_action(self) -> str:
        return self.cleaned_data.get('action') or 'unlink'


class BatchRemoveLinksForm(forms.Form):
    """Several identifiers to remove from one source document.

    Identifier shapes are checked per item by the service so that one bad
    item does not reject the whole batch.
    """

    source_document_id = forms.IntegerField(min_value=1)
    links = forms.JSONField()
    action = forms.ChoiceField(choices=ACTION_CHOICES, required=False)
    stop_on_error = forms.BooleanField(required=False)

    def clean_links(self) -> list[dict[str, Any]]:
        raw_links = self.cleaned_data.get('links')
        if not isinstance(raw_links, list) or not raw_links:
            raise forms.ValidationError('Links must be a non-empty list.')
        for index, item in enumerate(raw_links):
            if not isinstance(item, dict):
                raise forms.ValidationError(f'Link {index} must be an object.')
            action = item.get('action')
            if action is not None and action not in dict(ACTION_CHOICES):
                raise forms.ValidationError(f'Link {index} has an invalid action.')
        return raw_links

    def clean_action(self) -> str:
        return self.cleaned_data.get('action') or 'unlink'


class SearchDocumentsForm(forms.Form):
    keyword = forms.CharField(max_length=200, required=False)
    search_scope = forms.ChoiceField(choices=SEARCH_SCOPE_CHOICES, required=False)
    document_type = forms.CharField(max_length=40, required=False)
    status = forms.CharField(max_length=20, required=False)
    category = forms.CharField(required=False, help_text='Comma-separated category slugs.')
    tag = forms.CharField(required=False, help_text='Comma-separated tag slugs.')
    page = forms.IntegerField(min_value=1, required=False)
    per_page = forms.IntegerField(min_value=1, max_value=100, required=False)

    def clean_category(self) -> list[str]:
        return _split_slugs(self.cleaned_data.get('category', ''))

    def clean_tag(self) -> list[str]:
        return _split_slugs(self.cleaned_data.get('tag', ''))

    def search_options(self) -> dict[str, Any]:
        data = self.cleaned_data
        return {
            'keyword': data.get('keyword') or '',
            'search_scope': data.get('search_scope') or 'all',
            'document_type': data.get('document_type') or None,
            'status': data.get('status') or 'publish',
            'category': data.get('category') or [],
            'tag': data.get('tag') or [],
            'page': data.get('page') or 1,
            'per_page': data.get('per_page') or 20,
        }


def _split_slugs(value: str) -> list[str]:
    return [part.strip() for part in (value or '').split(',') if part.strip()]
