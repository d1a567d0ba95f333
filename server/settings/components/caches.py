"""Cache configuration.

The cache backs the background-job overlap flags and the upload rate
limiter. Management commands run from cron are separate processes, so
the backend must be shared between processes: the file based cache by
default, Redis or the database cache when workers span hosts.
"""

import tempfile
from pathlib import Path

from server.settings.components import config

CACHES = {
    'default': {
        'BACKEND': config(
            'DJANGO_CACHE_BACKEND',
            default='django.core.cache.backends.filebased.FileBasedCache',
        ),
        'LOCATION': config(
            'DJANGO_CACHE_LOCATION',
            default=str(Path(tempfile.gettempdir()) / 'file-hosting-cache'),
        ),
    },
}
