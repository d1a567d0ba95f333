"""File hosting settings.

Read by ``server.apps.files.conf.FileHostingConfig.from_settings``.
Sizes are in bytes, durations in hours or seconds as named.
"""

from decouple import Csv

from server.settings.components import config

# Upload limits
FILEHOSTING_MAX_FILE_SIZE = config(
    'FILEHOSTING_MAX_FILE_SIZE',
    cast=int,
    default=100 * 1024 * 1024,
)
FILEHOSTING_CHUNKED_UPLOAD_THRESHOLD = config(
    'FILEHOSTING_CHUNKED_UPLOAD_THRESHOLD',
    cast=int,
    default=25 * 1024 * 1024,
)

# Expiration
FILEHOSTING_DEFAULT_FILE_TTL_HOURS = config(
    'FILEHOSTING_DEFAULT_FILE_TTL_HOURS',
    cast=int,
    default=24,
)
FILEHOSTING_MAX_FILE_TTL_HOURS = config(
    'FILEHOSTING_MAX_FILE_TTL_HOURS',
    cast=int,
    default=30 * 24,
)
FILEHOSTING_ALLOW_PERMANENT_FILES = config(
    'FILEHOSTING_ALLOW_PERMANENT_FILES',
    cast=bool,
    default=False,
)
FILEHOSTING_UPLOAD_SESSION_TTL_HOURS = config(
    'FILEHOSTING_UPLOAD_SESSION_TTL_HOURS',
    cast=int,
    default=48,
)

# Owner deletion
FILEHOSTING_GENERATE_DELETE_TOKENS = config(
    'FILEHOSTING_GENERATE_DELETE_TOKENS',
    cast=bool,
    default=True,
)
FILEHOSTING_ALLOW_OWNER_DELETE = config(
    'FILEHOSTING_ALLOW_OWNER_DELETE',
    cast=bool,
    default=True,
)

# Background jobs
FILEHOSTING_ASSEMBLY_LEASE_SECONDS = config(
    'FILEHOSTING_ASSEMBLY_LEASE_SECONDS',
    cast=int,
    default=3600,
)
FILEHOSTING_ORPHAN_GRACE_HOURS = config(
    'FILEHOSTING_ORPHAN_GRACE_HOURS',
    cast=int,
    default=6,
)
FILEHOSTING_SWEEP_BATCH_SIZE = config(
    'FILEHOSTING_SWEEP_BATCH_SIZE',
    cast=int,
    default=1000,
)
FILEHOSTING_JOB_LOCK_TIMEOUT_SECONDS = config(
    'FILEHOSTING_JOB_LOCK_TIMEOUT_SECONDS',
    cast=int,
    default=6 * 3600,
)
FILEHOSTING_STORAGE_WARNING_BYTES = config(
    'FILEHOSTING_STORAGE_WARNING_BYTES',
    cast=int,
    default=0,  # 0 disables the warning
)

# Rate limiting (requests per window per client, 0 = no limit)
FILEHOSTING_RATE_LIMIT_UPLOADS = config(
    'FILEHOSTING_RATE_LIMIT_UPLOADS',
    cast=int,
    default=0,
)
FILEHOSTING_RATE_LIMIT_DOWNLOADS = config(
    'FILEHOSTING_RATE_LIMIT_DOWNLOADS',
    cast=int,
    default=60,
)
FILEHOSTING_RATE_LIMIT_WINDOW_SECONDS = config(
    'FILEHOSTING_RATE_LIMIT_WINDOW_SECONDS',
    cast=int,
    default=60,
)

# Filename checks. Comma separated extensions replace the built-in
# deny list of executables and scripts when set.
FILEHOSTING_BLOCKED_EXTENSIONS = config(
    'FILEHOSTING_BLOCKED_EXTENSIONS',
    cast=Csv(),
    default=None,
) or None
FILEHOSTING_MAX_FILENAME_LENGTH = config(
    'FILEHOSTING_MAX_FILENAME_LENGTH',
    cast=int,
    default=255,
)
