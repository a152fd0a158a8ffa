from __future__ import annotations

import json
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Permission
from django.http import HttpResponse
from django.test import Client, RequestFactory, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from linkmanager import errors, services
from linkmanager.engine.errors import (
    AnchorNotFoundError,
    AnchorSpansElementsError,
    LinkNotFoundError,
    OccurrenceOutOfRangeError,
)
from linkmanager.forms import AddLinkForm, SearchDocumentsForm, UpdateLinkForm
from linkmanager.middleware import SlidingWindowRateThrottle
from linkmanager.models import Document, DocumentRevision, LinkOperation, Term

SITE_URL = 'https://example.com'


class LinkManagerTestCase(TestCase):
    def setUp(self) -> None:
        User = get_user_model()
        self.editor = User.objects.create_superuser(
            username='editor',
            email='editor@example.com',
            password='password123',
        )
        self.source = Document.objects.create(
            title='Source',
            slug='source',
            body='<p>This is some text with anchor here.</p>',
            status='publish',
            author=self.editor,
        )
        self.target = Document.objects.create(
            title='Target',
            slug='target',
            body='<p>Target body</p>',
            status='publish',
            author=self.editor,
        )

    def reload(self, document: Document) -> Document:
        return Document.objects.get(pk=document.pk)


@override_settings(LINKMANAGER_SITE_URL=SITE_URL)
class AddLinkServiceTests(LinkManagerTestCase):
    def test_add_link_saves_body_with_revision(self) -> None:
        payload = services.add_link(self.editor, self.source.pk, self.target.pk, 'anchor')

        self.assertTrue(payload['success'])
        self.assertEqual(payload['links_added'], 1)
        self.assertEqual(payload['occurrences_found'], 1)
        self.assertEqual(payload['target_permalink'], 'https://example.com/target/')
        self.assertEqual(
            self.reload(self.source).body,
            '<p>This is some text with <a href="https://example.com/target/">anchor</a> here.</p>',
        )
        revision = DocumentRevision.objects.get(document=self.source)
        self.assertEqual(revision.body, '<p>This is some text with anchor here.</p>')
        operation = LinkOperation.objects.get(document=self.source)
        self.assertEqual(operation.operation, LinkOperation.ADD)
        self.assertTrue(operation.changed)
        self.assertEqual(operation.revision, revision)

    def test_add_link_twice_skips_existing_link(self) -> None:
        services.add_link(self.editor, self.source.pk, self.target.pk, 'anchor', occurrence='all')
        payload = services.add_link(self.editor, self.source.pk, self.target.pk, 'anchor', occurrence='all')

        self.assertFalse(payload['success'])
        self.assertEqual(payload['links_added'], 0)
        self.assertEqual(payload['occurrences_linked'], 1)
        self.assertEqual(payload['skipped'][0]['reason'], 'already_linked')
        self.assertEqual(DocumentRevision.objects.filter(document=self.source).count(), 1)
        self.assertEqual(LinkOperation.objects.filter(document=self.source, changed=False).count(), 1)

    def test_add_link_rejects_unpublished_target(self) -> None:
        self.target.status = 'draft'
        self.target.save()

        with self.assertRaises(errors.LinkManagerError) as ctx:
            services.add_link(self.editor, self.source.pk, self.target.pk, 'anchor')
        self.assertEqual(ctx.exception.code, errors.TARGET_NOT_PUBLISHED)
        self.assertEqual(ctx.exception.data['target_status'], 'draft')

    def test_add_link_rejects_self_link(self) -> None:
        with self.assertRaises(errors.LinkManagerError) as ctx:
            services.add_link(self.editor, self.source.pk, self.source.pk, 'anchor')
        self.assertEqual(ctx.exception.code, errors.SELF_LINK_NOT_ALLOWED)

    def test_add_link_reports_missing_documents(self) -> None:
        with self.assertRaises(errors.LinkManagerError) as ctx:
            services.add_link(self.editor, 999, self.target.pk, 'anchor')
        self.assertEqual(ctx.exception.code, errors.DOCUMENT_NOT_FOUND)
        self.assertEqual(errors.status_for(ctx.exception.code), 404)

    def test_add_link_rejects_unsupported_document_type(self) -> None:
        self.source.document_type = 'attachment'
        self.source.save()

        with self.assertRaises(errors.LinkManagerError) as ctx:
            services.add_link(self.editor, self.source.pk, self.target.pk, 'anchor')
        self.assertEqual(ctx.exception.code, errors.INVALID_DOCUMENT_TYPE)

    def test_add_link_anchor_preconditions(self) -> None:
        with self.assertRaises(AnchorNotFoundError):
            services.add_link(self.editor, self.source.pk, self.target.pk, 'missing words')
        with self.assertRaises(OccurrenceOutOfRangeError) as ctx:
            services.add_link(self.editor, self.source.pk, self.target.pk, 'anchor', occurrence=3)
        self.assertEqual(ctx.exception.data, {'requested': 3, 'available': 1})

        self.source.body = '<p>click <strong>he</strong>re</p>'
        self.source.save()
        with self.assertRaises(AnchorSpansElementsError):
            services.add_link(self.editor, self.source.pk, self.target.pk, 'here')

    def test_add_link_uses_whole_match_when_an_earlier_one_is_split(self) -> None:
        self.source.body = '<p>Visit <b>New</b> York. Also New York here.</p>'
        self.source.save()

        payload = services.add_link(self.editor, self.source.pk, self.target.pk, 'New York')

        self.assertEqual(payload['links_added'], 1)
        self.assertEqual(
            self.reload(self.source).body,
            '<p>Visit <b>New</b> York. Also <a href="https://example.com/target/">New York</a> here.</p>',
        )

    def test_add_link_requires_edit_permission(self) -> None:
        reader = get_user_model().objects.create_user(username='reader', password='password123')

        with self.assertRaises(errors.LinkManagerError) as ctx:
            services.add_link(reader, self.source.pk, self.target.pk, 'anchor')
        self.assertEqual(ctx.exception.code, errors.PERMISSION_DENIED)
        self.assertEqual(errors.status_for(ctx.exception.code), 403)

        reader.user_permissions.add(Permission.objects.get(codename='change_document'))
        reader = get_user_model().objects.get(pk=reader.pk)
        payload = services.add_link(reader, self.source.pk, self.target.pk, 'anchor')
        self.assertTrue(payload['success'])

    def test_add_link_respects_edit_lock(self) -> None:
        other = get_user_model().objects.create_user(username='writer', first_name='Wren', last_name='Writer')
        self.source.locked_by = other
        self.source.locked_at = timezone.now()
        self.source.save()

        with self.assertRaises(errors.LinkManagerError) as ctx:
            services.add_link(self.editor, self.source.pk, self.target.pk, 'anchor')
        self.assertEqual(ctx.exception.code, errors.DOCUMENT_LOCKED)
        self.assertEqual(ctx.exception.message, 'Document is currently being edited by Wren Writer.')

    @override_settings(LINKMANAGER_LOCK_TIMEOUT=60)
    def test_expired_lock_is_ignored(self) -> None:
        other = get_user_model().objects.create_user(username='writer')
        self.source.locked_by = other
        self.source.locked_at = timezone.now() - timedelta(minutes=5)
        self.source.save()

        payload = services.add_link(self.editor, self.source.pk, self.target.pk, 'anchor')
        self.assertTrue(payload['success'])

    @patch('linkmanager.services.logger')
    def test_saved_edit_is_logged(self, mock_logger) -> None:
        services.add_link(self.editor, self.source.pk, self.target.pk, 'anchor')

        mock_logger.info.assert_called_once()
        extra = mock_logger.info.call_args.kwargs['extra']
        self.assertEqual(extra['document_id'], self.source.pk)
        self.assertEqual(extra['links_added'], 1)


@override_settings(LINKMANAGER_SITE_URL=SITE_URL)
class BatchServiceTests(LinkManagerTestCase):
    def test_batch_add_reports_each_item(self) -> None:
        self.source.body = '<p>Alpha and beta and gamma.</p>'
        self.source.save()
        second = Document.objects.create(title='Second', slug='second', status='publish')

        payload = services.batch_add_links(
            self.editor,
            self.source.pk,
            [
                {'anchor_text': 'alpha', 'target_document_id': self.target.pk},
                {'anchor_text': 'delta', 'target_document_id': self.target.pk},
                {'anchor_text': 'beta', 'target_document_id': 999},
                {'anchor_text': 'gamma', 'target_document_id': second.pk},
            ],
        )

        self.assertEqual(payload['total_added'], 2)
        self.assertEqual(payload['total_failed'], 2)
        self.assertEqual(
            [(item['status'], item.get('code')) for item in payload['results']],
            [
                ('added', None),
                ('failed', 'anchor_not_found'),
                ('failed', 'document_not_found'),
                ('added', None),
            ],
        )
        self.assertEqual(
            self.reload(self.source).body,
            '<p><a href="https://example.com/target/">Alpha</a> and beta and '
            '<a href="https://example.com/second/">gamma</a>.</p>',
        )
        self.assertEqual(DocumentRevision.objects.filter(document=self.source).count(), 1)

    def test_batch_add_stop_on_error_saves_nothing(self) -> None:
        with self.assertRaises(errors.LinkManagerError):
            services.batch_add_links(
                self.editor,
                self.source.pk,
                [
                    {'anchor_text': 'anchor', 'target_document_id': self.target.pk},
                    {'anchor_text': 'text', 'target_document_id': 999},
                ],
                stop_on_error=True,
            )
        self.assertEqual(self.reload(self.source).body, '<p>This is some text with anchor here.</p>')

    def test_batch_limit(self) -> None:
        links = [{'anchor_text': 'anchor', 'target_document_id': self.target.pk}] * 51

        with self.assertRaises(errors.LinkManagerError) as ctx:
            services.batch_add_links(self.editor, self.source.pk, links)
        self.assertEqual(ctx.exception.code, errors.BATCH_LIMIT_EXCEEDED)
        self.assertEqual(ctx.exception.message, 'Batch operation with 51 items exceeds maximum limit of 50.')

    def test_batch_remove_links(self) -> None:
        self.source.body = '<p><a href="/one/">one</a> <a href="/two/">two</a></p>'
        self.source.save()

        payload = services.batch_remove_links(
            self.editor,
            self.source.pk,
            [
                {'by': 'url', 'url': '/one/'},
                {'by': 'url', 'url': '/missing/'},
                {'by': 'anchor', 'anchor_text': 'two', 'action': 'delete'},
            ],
        )

        self.assertEqual(payload['total_removed'], 2)
        self.assertEqual(payload['results'][1]['code'], 'link_not_found')
        self.assertEqual(self.reload(self.source).body, '<p>one </p>')


@override_settings(LINKMANAGER_SITE_URL=SITE_URL)
class UpdateRemoveServiceTests(LinkManagerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.source.body = '<p>Read <a href="https://example.com/old/" class="x">the guide</a> now.</p>'
        self.source.save()

    def test_update_requires_a_change(self) -> None:
        with self.assertRaises(errors.LinkManagerError) as ctx:
            services.update_link(self.editor, self.source.pk, {'by': 'index', 'index': 1})
        self.assertEqual(ctx.exception.code, errors.NO_CHANGES_REQUESTED)

    def test_update_retargets_link(self) -> None:
        payload = services.update_link(
            self.editor,
            self.source.pk,
            {'by': 'anchor', 'anchor_text': 'the guide'},
            new_target_document_id=self.target.pk,
            new_attributes={'rel': 'nofollow'},
        )

        self.assertEqual(payload['links_updated'], 1)
        self.assertEqual(
            payload['changes'][0]['target'],
            {'old': 'https://example.com/old/', 'new': 'https://example.com/target/'},
        )
        self.assertEqual(
            self.reload(self.source).body,
            '<p>Read <a href="https://example.com/target/" class="x" rel="nofollow">the guide</a> now.</p>',
        )

    def test_update_unknown_link(self) -> None:
        with self.assertRaises(LinkNotFoundError):
            services.update_link(
                self.editor,
                self.source.pk,
                {'by': 'url', 'url': 'https://example.com/missing/'},
                new_anchor_text='Guide',
            )

    def test_remove_link_unlinks(self) -> None:
        payload = services.remove_link(self.editor, self.source.pk, {'by': 'url', 'url': 'https://example.com/old/'})

        self.assertEqual(payload['links_removed'], 1)
        self.assertEqual(payload['removed_links'][0]['anchor_text'], 'the guide')
        self.assertEqual(self.reload(self.source).body, '<p>Read the guide now.</p>')

    def test_remove_unknown_link(self) -> None:
        with self.assertRaises(LinkNotFoundError):
            services.remove_link(self.editor, self.source.pk, {'by': 'index', 'index': 4})
        self.assertFalse(LinkOperation.objects.exists())


@override_settings(LINKMANAGER_SITE_URL=SITE_URL)
class ReadServiceTests(LinkManagerTestCase):
    def test_get_document(self) -> None:
        news = Term.objects.create(name='News', slug='news', taxonomy=Term.CATEGORY)
        self.source.terms.add(news)

        payload = services.get_document(self.editor, self.source.pk)

        self.assertEqual(payload['permalink'], 'https://example.com/source/')
        self.assertEqual(payload['editor_type'], 'flat')
        self.assertEqual(payload['categories'], [{'id': news.pk, 'name': 'News', 'slug': 'news'}])
        self.assertEqual(payload['author']['name'], 'editor')

    def test_search_documents(self) -> None:
        Document.objects.create(title='Draft target', slug='draft-target', status='draft')
        tagged = Document.objects.create(title='Tagged', slug='tagged', status='publish', body='<p>Garden tips</p>')
        tagged.terms.add(Term.objects.create(name='Garden', slug='garden', taxonomy=Term.TAG))

        everything = services.search_documents(self.editor, keyword='target')
        self.assertEqual([item['title'] for item in everything['results']], ['Target'])

        by_tag = services.search_documents(self.editor, tag=['garden'])
        self.assertEqual([item['id'] for item in by_tag['results']], [tagged.pk])
        self.assertEqual(by_tag['results'][0]['excerpt'], 'Garden tips')

        paged = services.search_documents(self.editor, per_page=2, page=2)
        self.assertEqual(paged['pagination'], {'total': 3, 'total_pages': 2, 'current_page': 2, 'per_page': 2})

    def test_validate_links(self) -> None:
        draft = Document.objects.create(title='Draft', slug='draft', status='draft')
        self.source.body = (
            '<p><a href="https://example.com/target/">ok</a> '
            '<a href="https://example.com/gone/">gone</a> '
            f'<a href="https://example.com/{draft.slug}/">draft</a> '
            f'<a href="https://example.com/?p={self.target.pk}">by id</a> '
            '<a href="https://elsewhere.org/">external</a></p>'
        )
        self.source.save()

        outcome = services.validate_links(self.editor, self.source.pk)

        self.assertEqual(outcome['total_internal_links'], 4)
        self.assertEqual(
            outcome['validation_summary'],
            {'valid': 1, 'broken': 1, 'unpublished': 1, 'permalink_mismatch': 1},
        )

    def test_link_report(self) -> None:
        self.source.body = (
            '<p><a href="/target/" rel="nofollow">ok</a> '
            '<a href="https://elsewhere.org/">external</a></p>'
        )
        self.source.save()

        report = services.link_report(self.editor, self.source.pk)

        self.assertEqual(report['summary']['valid_links'], 1)
        self.assertEqual(report['summary']['external_links'], 1)
        self.assertEqual(report['summary']['links_with_nofollow'], 1)
        self.assertEqual(report['internal_links']['valid'][0]['target']['title'], 'Target')


class FormTests(TestCase):
    def test_add_link_form_normalises_occurrence(self) -> None:
        form = AddLinkForm({'source_document_id': 1, 'target_document_id': 2, 'anchor_text': 'x', 'occurrence': '3'})
        self.assertTrue(form.is_valid(), form.errors)
        self.assertEqual(form.cleaned_data['occurrence'], 3)
        self.assertEqual(form.cleaned_data['if_exists'], 'skip')

        form = AddLinkForm({'source_document_id': 1, 'target_document_id': 2, 'anchor_text': 'x', 'occurrence': 'sometimes'})
        self.assertFalse(form.is_valid())
        self.assertIn('occurrence', form.errors)

    def test_add_link_form_validates_attributes(self) -> None:
        form = AddLinkForm({
            'source_document_id': 1,
            'target_document_id': 2,
            'anchor_text': 'x',
            'attributes': {'rel': ['no', 'follow']},
        })
        self.assertFalse(form.is_valid())
        self.assertIn('attributes', form.errors)

    def test_update_link_form_checks_identifier(self) -> None:
        form = UpdateLinkForm({'source_document_id': 1, 'identifier': {'by': 'url'}})
        self.assertFalse(form.is_valid())
        self.assertIn('identifier', form.errors)

        form = UpdateLinkForm({'source_document_id': 1, 'identifier': {'by': 'anchor', 'anchor': 'here'}})
        self.assertTrue(form.is_valid(), form.errors)
        self.assertEqual(form.cleaned_data['identifier'], {'by': 'anchor', 'anchor_text': 'here', 'occurrence': 1})
        self.assertTrue(form.cleaned_data['merge_attributes'])
        self.assertIsNone(form.cleaned_data['new_anchor_text'])

    def test_search_form_splits_terms(self) -> None:
        form = SearchDocumentsForm({'category': 'news, tips,', 'per_page': '5'})
        self.assertTrue(form.is_valid(), form.errors)
        options = form.search_options()
        self.assertEqual(options['category'], ['news', 'tips'])
        self.assertEqual(options['per_page'], 5)
        self.assertEqual(options['status'], 'publish')


@override_settings(LINKMANAGER_SITE_URL=SITE_URL)
class ApiViewTests(LinkManagerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client: Client = Client()
        self.client.force_login(self.editor)

    def post_json(self, name: str, payload) -> HttpResponse:
        body = payload if isinstance(payload, str) else json.dumps(payload)
        return self.client.post(reverse(name), data=body, content_type='application/json')

    def test_add_link_endpoint(self) -> None:
        response = self.post_json('linkmanager:link_add', {
            'source_document_id': self.source.pk,
            'target_document_id': self.target.pk,
            'anchor_text': 'anchor',
        })

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['links_added'], 1)
        self.assertIn('href="https://example.com/target/"', self.reload(self.source).body)

    def test_api_requires_authentication(self) -> None:
        self.client.logout()
        response = self.client.get(reverse('linkmanager:document_detail', args=[self.source.pk]))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['code'], 'authentication_required')

    def test_invalid_json_is_rejected(self) -> None:
        response = self.post_json('linkmanager:link_add', '{not json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'validation_error')

    def test_form_errors_are_reported(self) -> None:
        response = self.post_json('linkmanager:link_remove', {
            'source_document_id': self.source.pk,
            'identifier': {'by': 'index', 'index': 0},
        })

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload['code'], 'validation_error')
        self.assertIn('identifier', payload['data']['errors'])

    def test_engine_errors_map_to_status(self) -> None:
        response = self.post_json('linkmanager:link_add', {
            'source_document_id': self.source.pk,
            'target_document_id': self.target.pk,
            'anchor_text': 'anchor',
            'occurrence': 4,
        })

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {
            'code': 'occurrence_out_of_range',
            'message': 'Requested occurrence 4 exceeds available matches (1).',
            'data': {'status': 400, 'requested': 4, 'available': 1},
        })

    def test_missing_document_is_404(self) -> None:
        response = self.client.get(reverse('linkmanager:links_validate', args=[999]))

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['data']['document_id'], 999)

    def test_locked_document_is_423(self) -> None:
        self.source.locked_by = get_user_model().objects.create_user(username='writer')
        self.source.locked_at = timezone.now()
        self.source.save()

        response = self.post_json('linkmanager:link_update', {
            'source_document_id': self.source.pk,
            'identifier': {'by': 'index', 'index': 1},
            'new_attributes': {'rel': 'nofollow'},
        })
        self.assertEqual(response.status_code, 423)

    def test_mutation_routes_reject_get(self) -> None:
        response = self.client.get(reverse('linkmanager:link_batch_add'))
        self.assertEqual(response.status_code, 405)

    def test_search_endpoint(self) -> None:
        response = self.client.get(reverse('linkmanager:document_search'), {'keyword': 'target'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item['id'] for item in response.json()['results']], [self.target.pk])

    def test_history_lists_operations(self) -> None:
        self.post_json('linkmanager:link_add', {
            'source_document_id': self.source.pk,
            'target_document_id': self.target.pk,
            'anchor_text': 'anchor',
        })

        response = self.client.get(reverse('linkmanager:history'))

        self.assertEqual(response.status_code, 200)
        operations = response.json()['operations']
        self.assertEqual(len(operations), 1)
        self.assertEqual(operations[0]['operation'], 'add')
        self.assertEqual(operations[0]['document_title'], 'Source')
        self.assertTrue(operations[0]['changed'])


class RateLimitMiddlewareTests(TestCase):
    def setUp(self) -> None:
        self.factory = RequestFactory()

    @override_settings(THROTTLED_ROUTES=['linkmanager:link_add'])
    def test_rate_limit_blocks_after_threshold(self) -> None:
        middleware = SlidingWindowRateThrottle(lambda request: HttpResponse('OK'), limit=2, window=60, key_prefix='test-rate')

        def build_request():
            req = self.factory.post('/api/links/add/')
            req.resolver_match = SimpleNamespace(view_name='linkmanager:link_add')
            req.META['REMOTE_ADDR'] = '127.0.0.1'
            return req

        self.assertEqual(middleware(build_request()).status_code, 200)
        self.assertEqual(middleware(build_request()).status_code, 200)
        third = middleware(build_request())
        self.assertEqual(third.status_code, 429)
        self.assertEqual(json.loads(third.content)['code'], 'rate_limited')

    @override_settings(THROTTLED_ROUTES=['linkmanager:link_add'])
    def test_unthrottled_routes_pass_through(self) -> None:
        middleware = SlidingWindowRateThrottle(lambda request: HttpResponse('OK'), limit=1, window=60, key_prefix='test-free')

        for _ in range(3):
            request = self.factory.get('/api/documents/')
            request.META['REMOTE_ADDR'] = '127.0.0.1'
            self.assertEqual(middleware(request).status_code, 200)
