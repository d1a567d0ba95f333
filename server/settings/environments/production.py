"""Production settings.

Refuses to start with a per-process cache: job overlap flags and
rate-limit counters must be visible to every worker.
"""

from django.core.exceptions import ImproperlyConfigured

from server.settings.components import config
from server.settings.components.caches import CACHES

DEBUG = False

ALLOWED_HOSTS = [
    config('DOMAIN_NAME'),
]

SECURE_CONTENT_TYPE_NOSNIFF = True
SECURE_REFERRER_POLICY = 'same-origin'
SESSION_COOKIE_SECURE = True
CSRF_COOKIE_SECURE = True

if CACHES['default']['BACKEND'].endswith('locmem.LocMemCache'):
    raise ImproperlyConfigured(
        'DJANGO_CACHE_BACKEND must be shared between processes in production',
    )
