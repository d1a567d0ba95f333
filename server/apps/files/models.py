"""Database models for files app."""

from datetime import datetime
from pathlib import Path
from typing import ClassVar, Final, final, override

from django.db import models
from django.utils import timezone

# Constants for field max lengths
_FILE_ID_MAX_LENGTH: Final = 64
_ORIGINAL_NAME_MAX_LENGTH: Final = 255
_MIME_TYPE_MAX_LENGTH: Final = 255
_CHECKSUM_MAX_LENGTH: Final = 64  # SHA256 hex length
_DELETE_TOKEN_MAX_LENGTH: Final = 64
_STORAGE_PATH_MAX_LENGTH: Final = 255

# MIME types that can be rendered inline by a browser
PREVIEWABLE_MIME_TYPES: Final = frozenset((
    'image/jpeg',
    'image/png',
    'image/gif',
    'image/webp',
    'image/svg+xml',
    'application/pdf',
    'text/plain',
    'text/html',
    'text/css',
    'text/javascript',
    'application/json',
    'application/xml',
    'text/xml',
    'video/mp4',
    'video/webm',
    'video/ogg',
    'audio/mpeg',
    'audio/wav',
    'audio/ogg',
    'audio/mp4',
))


class FileQuerySet(models.QuerySet['File']):
    """Expiry-aware queries for hosted files."""

    def expired(self, now: datetime | None = None) -> 'FileQuerySet':
        """Files whose expiry is at or before ``now``.

        Files without an expiry never match.
        """
        return self.filter(
            expires_at__isnull=False,
            expires_at__lte=now or timezone.now(),
        )

    def live(self, now: datetime | None = None) -> 'FileQuerySet':
        """Files that have not expired yet."""
        return self.filter(
            models.Q(expires_at__isnull=True)
            | models.Q(expires_at__gt=now or timezone.now()),
        )


@final
class File(models.Model):
    """Hosted file stored in S3-compatible storage.

    The storage key is ``files/<id[0:2]>/<id[2:4]>/<file_id>.<ext>``
    and is held by the ``file`` field. Rows are created only after all
    bytes are in storage, so ``size_bytes`` and ``checksum_sha256``
    always describe the stored object.
    """

    file_id = models.CharField(
        max_length=_FILE_ID_MAX_LENGTH,
        unique=True,
        help_text='Opaque public identifier (hex)',
    )

    original_name = models.CharField(
        max_length=_ORIGINAL_NAME_MAX_LENGTH,
        help_text='Filename as supplied by the uploader',
    )

    # upload_to='' means we control the full path
    file = models.FileField(
        upload_to='',
        max_length=_STORAGE_PATH_MAX_LENGTH,
        help_text='Storage key: files/ab/cd/<file_id>.ext',
    )

    size_bytes = models.BigIntegerField(
        help_text='File size in bytes',
    )

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        help_text='MIME type guessed from the filename',
    )

    checksum_sha256 = models.CharField(
        max_length=_CHECKSUM_MAX_LENGTH,
        help_text='SHA256 hash for integrity verification',
        db_index=True,
    )

    delete_token = models.CharField(
        max_length=_DELETE_TOKEN_MAX_LENGTH,
        blank=True,
        default='',
        help_text='Secret allowing the uploader to delete the file',
    )

    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text='Expiry time, empty means the file never expires',
    )

    created_at = models.DateTimeField(auto_now_add=True)

    objects = FileQuerySet.as_manager()

    class Meta:
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-created_at']

        indexes: ClassVar[list[models.Index]] = [
            # Duplicate lookups match on checksum and size
            models.Index(
                fields=['checksum_sha256', 'size_bytes'],
                name='files_checksum_size_idx',
            ),
        ]

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.CheckConstraint(
                condition=models.Q(size_bytes__gte=0),
                name='files_size_bytes_non_negative',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.original_name} ({self.file_id[:12]})'

    @property
    def storage_path(self) -> str:
        """Storage key of the file's bytes."""
        return self.file.name

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the file is past its expiry.

        Args:
            now: Reference time, defaults to the current time.

        Returns:
            True if the file has an expiry at or before ``now``.
        """
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or timezone.now())

    def is_previewable(self) -> bool:
        """Check if the file can be displayed inline."""
        return self.mime_type in PREVIEWABLE_MIME_TYPES

    def get_extension(self) -> str:
        """Extract extension of the original filename.

        Example: 'report.PDF' -> 'pdf'

        Returns:
            Extension without dot (lowercase).
        """
        return Path(self.original_name).suffix.lstrip('.').lower()
