from django.apps import AppConfig


class LinkManagerConfig(AppConfig):
    """Configuration for the linkmanager Django app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'linkmanager'
    verbose_name = 'Internal link manager'
