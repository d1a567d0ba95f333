"""Django app configuration for files app."""

from django.apps import AppConfig


class FilesConfig(AppConfig):
    """Configuration for hosted files app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.files'
    verbose_name = 'Hosted Files'
