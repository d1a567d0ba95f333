"""Django storage configuration for S3-compatible backends.

Hosted files and in-progress upload chunks live in the same bucket:

- ``files/<id[0:2]>/<id[2:4]>/<file_id>.<ext>`` for finished files
- ``chunks/<session_id>/<index>`` for chunks of open upload sessions

MinIO is used for local development, any S3-compatible service
(AWS S3, Cloudflare R2) in production.
"""

from typing import Any, Final

from server.settings.components import config

# Objects read back into memory above this size spool to disk (bytes)
_MAX_MEMORY_SIZE: Final = 8 * 1024 * 1024

STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': {
        'BACKEND': 'server.apps.files.infrastructure.storage.FileStorage',
        'OPTIONS': {
            'bucket_name': config(
                'AWS_STORAGE_BUCKET_NAME',
                default='file-hosting',
            ),
            'access_key': config('AWS_ACCESS_KEY_ID', default='minioadmin'),
            'secret_key': config(
                'AWS_SECRET_ACCESS_KEY',
                default='minioadmin',
            ),
            'endpoint_url': config(
                'AWS_S3_ENDPOINT_URL',
                default=None,
            ),
            'region_name': config(
                'AWS_S3_REGION_NAME',
                default='auto',
            ),
            # Keys are generated ids, a rewrite of the same key is a retry
            'file_overwrite': True,
            'default_acl': None,  # Inherit bucket ACL
            'max_memory_size': _MAX_MEMORY_SIZE,
        },
    },
    'staticfiles': {
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
