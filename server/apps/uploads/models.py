"""Database models for chunked upload sessions."""

from collections.abc import Collection
from datetime import datetime
from typing import ClassVar, Final, final, override

from django.db import models
from django.utils import timezone

# Constants for field max lengths
_SESSION_ID_MAX_LENGTH: Final = 32
_ORIGINAL_NAME_MAX_LENGTH: Final = 255
_MIME_TYPE_MAX_LENGTH: Final = 255


class UploadSessionQuerySet(models.QuerySet['UploadSession']):
    """Expiry and claim queries for upload sessions."""

    def expired(self, now: datetime | None = None) -> 'UploadSessionQuerySet':
        """Sessions whose expiry is at or before ``now``."""
        return self.filter(expires_at__lte=now or timezone.now())

    def claimed_since(self, since: datetime) -> 'UploadSessionQuerySet':
        """Sessions whose assembly claim was taken after ``since``."""
        return self.filter(assembly_started_at__gt=since)

    def stale_claims(self, before: datetime) -> 'UploadSessionQuerySet':
        """Sessions holding an assembly claim taken at or before ``before``."""
        return self.filter(assembly_started_at__lte=before)


@final
class UploadSession(models.Model):
    """In-progress chunked upload.

    Received chunk indexes are stored as ``UploadedChunk`` rows, one per
    index, so recording a chunk is a single insert. The session is
    complete when it holds exactly ``expected_chunk_count`` rows.
    """

    session_id = models.CharField(
        max_length=_SESSION_ID_MAX_LENGTH,
        unique=True,
        help_text='Opaque session identifier (hex)',
    )

    original_name = models.CharField(
        max_length=_ORIGINAL_NAME_MAX_LENGTH,
        help_text='Filename of the file being uploaded',
    )

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        help_text='MIME type of the assembled file',
    )

    total_size = models.BigIntegerField(
        help_text='Declared size of the whole file in bytes',
    )

    chunk_size = models.BigIntegerField(
        help_text='Size of every chunk except possibly the last',
    )

    file_ttl = models.DurationField(
        null=True,
        blank=True,
        help_text='Lifetime of the assembled file, empty for the default',
    )

    expires_at = models.DateTimeField(
        db_index=True,
        help_text='Session is discarded after this time',
    )

    assembly_started_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text='Set while a finalize holds the assembly claim',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UploadSessionQuerySet.as_manager()

    class Meta:
        """Model metadata."""

        verbose_name = 'Upload Session'  # type: ignore[mutable-override]
        verbose_name_plural = 'Upload Sessions'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-created_at']

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.CheckConstraint(
                condition=models.Q(total_size__gt=0),
                name='uploads_total_size_positive',
            ),
            models.CheckConstraint(
                condition=models.Q(chunk_size__gt=0),
                name='uploads_chunk_size_positive',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.original_name} ({self.session_id[:8]})'

    @property
    def expected_chunk_count(self) -> int:
        """Number of chunks that make up the file (ceiling division)."""
        return -(-self.total_size // self.chunk_size)

    def expected_chunk_length(self, index: int) -> int:
        """Exact byte length the chunk at ``index`` must have.

        Every chunk is ``chunk_size`` long except the last, which holds
        the remainder.

        Args:
            index: Chunk index within range.

        Returns:
            Required chunk length in bytes.
        """
        if index == self.expected_chunk_count - 1:
            return self.total_size - index * self.chunk_size
        return self.chunk_size

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the session is past its expiry."""
        return (now or timezone.now()) > self.expires_at

    def received_indices(self) -> list[int]:
        """Sorted indexes of the chunks received so far."""
        return list(
            self.chunks.order_by('index').values_list('index', flat=True),
        )

    def received_count(self) -> int:
        """Number of distinct chunks received so far."""
        return self.chunks.count()

    def is_complete(self) -> bool:
        """Check whether every expected chunk has been received."""
        return self.received_count() == self.expected_chunk_count

    def missing_chunks(self, received: Collection[int] | None = None) -> list[int]:
        """Sorted indexes of chunks not received yet.

        Args:
            received: Already fetched received indexes, queried if None.

        Returns:
            Missing indexes in ascending order.
        """
        if received is None:
            received = self.received_indices()
        received_set = set(received)
        return [
            index
            for index in range(self.expected_chunk_count)
            if index not in received_set
        ]

    def progress(self, received_count: int | None = None) -> float:
        """Upload progress as a percentage of expected chunks."""
        if received_count is None:
            received_count = self.received_count()
        return round(received_count * 100 / self.expected_chunk_count, 2)


@final
class UploadedChunk(models.Model):
    """One received chunk of an upload session.

    The unique (session, index) pair makes recording a repeated index a
    no-op, so concurrent arrivals never lose or double-count an index.
    """

    session = models.ForeignKey(
        UploadSession,
        on_delete=models.CASCADE,
        related_name='chunks',
    )

    index = models.PositiveIntegerField(
        help_text='Zero-based position of the chunk in the file',
    )

    size_bytes = models.BigIntegerField(
        help_text='Chunk length in bytes',
    )

    received_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Uploaded Chunk'  # type: ignore[mutable-override]
        verbose_name_plural = 'Uploaded Chunks'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['session', 'index']

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.UniqueConstraint(
                fields=['session', 'index'],
                name='uploads_chunk_session_index_unique',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.session_id}#{self.index}'
