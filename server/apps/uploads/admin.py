"""Django admin configuration for uploads app."""

from typing import override

from django.contrib import admin
from django.http import HttpRequest

from server.apps.uploads.models import UploadedChunk, UploadSession


class UploadedChunkInline(admin.TabularInline):  # type: ignore[type-arg]
    """Read-only list of received chunks."""

    model = UploadedChunk
    extra = 0
    can_delete = False
    readonly_fields = ['index', 'size_bytes', 'received_at']

    @override
    def has_add_permission(
        self,
        request: HttpRequest,
        obj: UploadSession | None = None,
    ) -> bool:
        """Chunks are only added by uploads."""
        return False


@admin.register(UploadSession)
class UploadSessionAdmin(admin.ModelAdmin[UploadSession]):
    """Admin interface for UploadSession model."""

    list_display = [
        'session_id_short',
        'original_name',
        'total_size',
        'chunk_size',
        'progress_display',
        'expires_at',
        'assembly_started_at',
    ]

    list_filter = [
        'created_at',
        'expires_at',
    ]

    search_fields = [
        'session_id',
        'original_name',
    ]

    readonly_fields = [
        'session_id',
        'original_name',
        'mime_type',
        'total_size',
        'chunk_size',
        'file_ttl',
        'assembly_started_at',
        'created_at',
        'updated_at',
    ]

    inlines = [UploadedChunkInline]

    def session_id_short(self, obj: UploadSession) -> str:
        """Display truncated session ID.

        Args:
            obj: UploadSession instance.

        Returns:
            First 8 characters of session ID.
        """
        return obj.session_id[:8]
    session_id_short.short_description = 'Session ID'  # type: ignore[attr-defined]

    def progress_display(self, obj: UploadSession) -> str:
        """Display upload progress.

        Args:
            obj: UploadSession instance.

        Returns:
            Percentage string.
        """
        return f'{obj.progress():.1f}%'
    progress_display.short_description = 'Progress'  # type: ignore[attr-defined]

    @override
    def has_add_permission(self, request: HttpRequest) -> bool:
        """Disable adding sessions via admin.

        Sessions are only created by upload clients.

        Args:
            request: HTTP request.

        Returns:
            False - sessions cannot be added manually.
        """
        return False
