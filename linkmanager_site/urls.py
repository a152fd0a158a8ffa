"""URL configuration for linkmanager_site."""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('linkmanager.urls')),
]
