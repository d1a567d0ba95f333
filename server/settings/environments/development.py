"""Settings for local development (MinIO, SQLite)."""

from server.settings.components import config

DEBUG = True

ALLOWED_HOSTS = [
    config('DOMAIN_NAME', default='localhost'),
    'localhost',
    '0.0.0.0',  # noqa: S104
    '127.0.0.1',
    '[::1]',
]
