"""Database models for the linkmanager app.

Documents are the rich-text pages whose bodies hold internal links. Every
saved link edit keeps the previous body as a revision and is recorded in
the operation history.
"""

from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone


class Term(models.Model):
    """A category or tag attached to documents."""

    CATEGORY = 'category'
    TAG = 'tag'
    TAXONOMY_CHOICES = [
        (CATEGORY, 'Category'),
        (TAG, 'Tag'),
    ]

    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200)
    taxonomy = models.CharField(max_length=20, choices=TAXONOMY_CHOICES, default=CATEGORY)

    class Meta:
        unique_together = ('taxonomy', 'slug')

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.taxonomy}:{self.slug}"


class Document(models.Model):
    """A page or post whose body is edited by the link engine."""

    STATUS_CHOICES = [
        ('publish', 'Published'),
        ('draft', 'Draft'),
        ('pending', 'Pending review'),
        ('private', 'Private'),
        ('trash', 'Trash'),
    ]

    title = models.CharField(max_length=300)
    slug = models.SlugField(max_length=200, unique=True)
    body = models.TextField(blank=True)
    excerpt = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft', db_index=True)
    document_type = models.CharField(max_length=40, default='post', db_index=True)
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='documents',
    )
    terms = models.ManyToManyField(Term, blank=True, related_name='documents')
    locked_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='locked_documents',
    )
    locked_at = models.DateTimeField(null=True, blank=True)
    published_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-published_at']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return self.title

    def get_absolute_url(self) -> str:
        return f'/{self.slug}/'

    @property
    def permalink(self) -> str:
        site_url = getattr(settings, 'LINKMANAGER_SITE_URL', '').rstrip('/')
        return f'{site_url}{self.get_absolute_url()}'

    def lock_holder(self, user=None):
        """Return the user holding an active edit lock, ignoring ``user`` itself."""

        if self.locked_by_id is None or self.locked_at is None:
            return None
        if user is not None and self.locked_by_id == getattr(user, 'pk', None):
            return None
        timeout = getattr(settings, 'LINKMANAGER_LOCK_TIMEOUT', 150)
        if timezone.now() - self.locked_at > timedelta(seconds=timeout):
            return None
        return self.locked_by

    def terms_for(self, taxonomy: str) -> list[dict[str, object]]:
        return [
            {'id': term.pk, 'name': term.name, 'slug': term.slug}
            for term in self.terms.all()
            if term.taxonomy == taxonomy
        ]


class DocumentRevision(models.Model):
    """Body of a document as it was before a link edit was saved."""

    document = models.ForeignKey(Document, on_delete=models.CASCADE, related_name='revisions')
    body = models.TextField()
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='document_revisions',
    )
    reason = models.CharField(max_length=200, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-pk']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.document} · {self.created_at:%Y-%m-%d %H:%M}"


class LinkOperation(models.Model):
    """Stores a single link mutation request and its outcome."""

    ADD = 'add'
    BATCH_ADD = 'batch_add'
    UPDATE = 'update'
    REMOVE = 'remove'
    BATCH_REMOVE = 'batch_remove'
    OPERATION_CHOICES = [
        (ADD, 'Add link'),
        (BATCH_ADD, 'Batch add links'),
        (UPDATE, 'Update link'),
        (REMOVE, 'Remove link'),
        (BATCH_REMOVE, 'Batch remove links'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='link_operations',
    )
    document = models.ForeignKey(Document, on_delete=models.CASCADE, related_name='link_operations')
    operation = models.CharField(max_length=20, choices=OPERATION_CHOICES)
    request_payload = models.JSONField(default=dict, blank=True)
    result = models.JSONField(default=dict, blank=True)
    changed = models.BooleanField(default=False)
    revision = models.ForeignKey(
        DocumentRevision,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='operations',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-pk']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.user} · {self.document} · {self.operation}"
