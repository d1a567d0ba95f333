"""Typed configuration for the file hosting components."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Final, Self, final

from django.conf import settings

_MB: Final = 1024 * 1024

# Executables and scripts, from common web hosting deny lists
_BLOCKED_EXTENSIONS: Final = frozenset((
    'exe', 'bat', 'cmd', 'com', 'pif', 'scr', 'vbs', 'js', 'jar',
    'php', 'php3', 'php4', 'php5', 'phtml', 'asp', 'aspx', 'jsp',
    'sh', 'bash', 'csh', 'ksh', 'zsh', 'pl', 'py', 'rb', 'ps1',
    'msi', 'deb', 'rpm', 'dmg', 'pkg', 'app', 'ipa', 'apk',
))


@final
@dataclass(frozen=True, slots=True)
class FileHostingConfig:
    """Explicit configuration passed to file hosting operations.

    Built from ``FILEHOSTING_*`` Django settings by ``from_settings``;
    tests and callers may construct it directly instead.

    Attributes:
        max_file_size: Largest accepted file, bytes (default 100 MB).
        chunked_upload_threshold: Files above this size should be uploaded
            in chunks (default 25 MB).
        default_file_ttl: Lifetime of a file when the caller gives none
            (default 24 h).
        max_file_ttl: Longest lifetime a caller may request (default 30 d).
        allow_permanent_files: Whether files may never expire.
        upload_session_ttl: Lifetime of an upload session (default 48 h).
        generate_delete_tokens: Issue an owner delete token per file.
        allow_owner_delete: Honor owner delete tokens.
        assembly_lease: Age after which a finalize claim counts as
            abandoned (default 1 h).
        orphan_grace: Minimum age of an unreferenced storage object
            before maintenance removes it (default 6 h).
        sweep_batch_size: Max records per sweeper pass and kind.
        job_lock_timeout: Expiry of a background job overlap flag.
        storage_warning_bytes: Stored bytes that trigger a monitor
            warning, 0 disables it.
        rate_limit_uploads: Upload requests per window per client,
            0 disables the limit.
        rate_limit_downloads: Download requests per window per client.
        rate_limit_window: Length of the rate limit window.
        blocked_extensions: Lowercase extensions rejected on upload.
        max_filename_length: Longest stored filename, longer names are
            shortened keeping their extension.
    """

    max_file_size: int = 100 * _MB
    chunked_upload_threshold: int = 25 * _MB
    default_file_ttl: timedelta = timedelta(hours=24)
    max_file_ttl: timedelta = timedelta(days=30)
    allow_permanent_files: bool = False
    upload_session_ttl: timedelta = timedelta(hours=48)
    generate_delete_tokens: bool = True
    allow_owner_delete: bool = True
    assembly_lease: timedelta = timedelta(hours=1)
    orphan_grace: timedelta = timedelta(hours=6)
    sweep_batch_size: int = 1000
    job_lock_timeout: timedelta = timedelta(hours=6)
    storage_warning_bytes: int = 0
    rate_limit_uploads: int = 0
    rate_limit_downloads: int = 60
    rate_limit_window: timedelta = timedelta(seconds=60)
    blocked_extensions: frozenset[str] = _BLOCKED_EXTENSIONS
    max_filename_length: int = 255

    @classmethod
    def from_settings(cls) -> Self:
        """Build configuration from Django settings.

        Missing settings fall back to the dataclass defaults.

        Returns:
            FileHostingConfig instance.
        """
        defaults = cls()

        def _setting(name: str, default: object) -> object:  # noqa: WPS430
            return getattr(settings, f'FILEHOSTING_{name}', default)

        def _hours(name: str, default: timedelta) -> timedelta:  # noqa: WPS430
            hours = _setting(name, None)
            return default if hours is None else timedelta(hours=hours)

        def _seconds(  # noqa: WPS430
            name: str,
            default: timedelta,
        ) -> timedelta:
            seconds = _setting(name, None)
            return default if seconds is None else timedelta(seconds=seconds)

        def _extensions(  # noqa: WPS430
            name: str,
            default: frozenset[str],
        ) -> frozenset[str]:
            extensions = _setting(name, None)
            if extensions is None:
                return default
            return frozenset(
                extension.strip().lstrip('.').lower()
                for extension in extensions  # type: ignore[attr-defined]
                if extension.strip()
            )

        return cls(
            max_file_size=_setting('MAX_FILE_SIZE', defaults.max_file_size),
            chunked_upload_threshold=_setting(
                'CHUNKED_UPLOAD_THRESHOLD',
                defaults.chunked_upload_threshold,
            ),
            default_file_ttl=_hours(
                'DEFAULT_FILE_TTL_HOURS',
                defaults.default_file_ttl,
            ),
            max_file_ttl=_hours('MAX_FILE_TTL_HOURS', defaults.max_file_ttl),
            allow_permanent_files=_setting(
                'ALLOW_PERMANENT_FILES',
                defaults.allow_permanent_files,
            ),
            upload_session_ttl=_hours(
                'UPLOAD_SESSION_TTL_HOURS',
                defaults.upload_session_ttl,
            ),
            generate_delete_tokens=_setting(
                'GENERATE_DELETE_TOKENS',
                defaults.generate_delete_tokens,
            ),
            allow_owner_delete=_setting(
                'ALLOW_OWNER_DELETE',
                defaults.allow_owner_delete,
            ),
            assembly_lease=_seconds(
                'ASSEMBLY_LEASE_SECONDS',
                defaults.assembly_lease,
            ),
            orphan_grace=_hours('ORPHAN_GRACE_HOURS', defaults.orphan_grace),
            sweep_batch_size=_setting(
                'SWEEP_BATCH_SIZE',
                defaults.sweep_batch_size,
            ),
            job_lock_timeout=_seconds(
                'JOB_LOCK_TIMEOUT_SECONDS',
                defaults.job_lock_timeout,
            ),
            storage_warning_bytes=_setting(
                'STORAGE_WARNING_BYTES',
                defaults.storage_warning_bytes,
            ),
            rate_limit_uploads=_setting(
                'RATE_LIMIT_UPLOADS',
                defaults.rate_limit_uploads,
            ),
            rate_limit_downloads=_setting(
                'RATE_LIMIT_DOWNLOADS',
                defaults.rate_limit_downloads,
            ),
            rate_limit_window=_seconds(
                'RATE_LIMIT_WINDOW_SECONDS',
                defaults.rate_limit_window,
            ),
            blocked_extensions=_extensions(
                'BLOCKED_EXTENSIONS',
                defaults.blocked_extensions,
            ),
            max_filename_length=_setting(
                'MAX_FILENAME_LENGTH',
                defaults.max_filename_length,
            ),
        )


def get_config(config: FileHostingConfig | None = None) -> FileHostingConfig:
    """Return the given configuration or one built from settings.

    Args:
        config: Explicit configuration, if the caller has one.

    Returns:
        FileHostingConfig to use.
    """
    if config is not None:
        return config
    return FileHostingConfig.from_settings()
