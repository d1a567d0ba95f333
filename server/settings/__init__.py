"""Main settings file, assembled with ``django-split-settings``.

Components are shared by every environment. The environment module is
picked from the ``DJANGO_ENV`` variable (``development`` by default).
An optional ``environments/local.py`` may override anything.
"""

from os import environ

import django_stubs_ext
from split_settings.tools import include, optional

# Allows generic admin and queryset classes at runtime
django_stubs_ext.monkeypatch()

environ.setdefault('DJANGO_ENV', 'development')

_ENV = environ['DJANGO_ENV']

_base_settings = (
    'components/common.py',
    'components/logging.py',
    'components/caches.py',
    'components/storages.py',
    'components/filehosting.py',
    # Select the right env:
    'environments/{0}.py'.format(_ENV),
    # Optionally override some settings:
    optional('environments/local.py'),
)

include(*_base_settings)
