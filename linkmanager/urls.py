"""URL configuration for the linkmanager app.

This module defines the JSON API routes and sets ``app_name`` so the
project URL configuration can namespace them.
"""

from django.urls import path

from . import views

app_name = 'linkmanager'

urlpatterns = [
    path('documents/', views.document_search, name='document_search'),
    path('documents/<int:document_id>/', views.document_detail, name='document_detail'),
    path('documents/<int:document_id>/links/validate/', views.links_validate, name='links_validate'),
    path('documents/<int:document_id>/links/report/', views.links_report, name='links_report'),
    path('links/add/', views.link_add, name='link_add'),
    path('links/batch-add/', views.link_batch_add, name='link_batch_add'),
    path('links/update/', views.link_update, name='link_update'),
    path('links/remove/', views.link_remove, name='link_remove'),
    path('links/batch-remove/', views.link_batch_remove, name='link_batch_remove'),
    path('history/', views.operation_history, name='history'),
]
