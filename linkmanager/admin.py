from django.contrib import admin

from .models import Document, DocumentRevision, LinkOperation, Term


@admin.register(Term)
class TermAdmin(admin.ModelAdmin):
    list_display = ('name', 'slug', 'taxonomy')
    list_filter = ('taxonomy',)
    search_fields = ('name', 'slug')


@admin.register(Document)
class DocumentAdmin(admin.ModelAdmin):
    list_display = ('title', 'slug', 'document_type', 'status', 'author', 'published_at', 'updated_at')
    list_filter = ('document_type', 'status')
    search_fields = ('title', 'slug', 'body')
    filter_horizontal = ('terms',)


@admin.register(DocumentRevision)
class DocumentRevisionAdmin(admin.ModelAdmin):
    list_display = ('document', 'author', 'reason', 'created_at')
    search_fields = ('document__title', 'reason')


@admin.register(LinkOperation)
class LinkOperationAdmin(admin.ModelAdmin):
    list_display = ('document', 'user', 'operation', 'changed', 'created_at')
    list_filter = ('operation', 'changed')
    search_fields = ('document__title',)
