"""Django admin configuration for files app."""

from typing import override

from django.contrib import admin
from django.http import HttpRequest
from django.utils import timezone
from django.utils.html import format_html

from server.apps.files.models import File


@admin.register(File)
class FileAdmin(admin.ModelAdmin[File]):
    """Admin interface for File model.

    Files are stored and removed by the file hosting logic only, so the
    admin is for inspection.
    """

    list_display = [
        'file_id_short',
        'original_name',
        'size_display',
        'mime_type',
        'created_at',
        'expiry_display',
    ]

    list_filter = [
        'mime_type',
        'created_at',
        'expires_at',
    ]

    search_fields = [
        'file_id',
        'original_name',
        'checksum_sha256',
    ]

    readonly_fields = [
        'file_id',
        'original_name',
        'file',
        'size_bytes',
        'mime_type',
        'checksum_sha256',
        'expires_at',
        'created_at',
    ]

    exclude = ['delete_token']

    fieldsets = (
        ('File Information', {
            'fields': ('file_id', 'original_name', 'file'),
        }),
        ('Metadata', {
            'fields': (
                'size_bytes',
                'mime_type',
                'checksum_sha256',
            ),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'expires_at'),
        }),
    )

    def file_id_short(self, obj: File) -> str:
        """Display truncated file ID.

        Args:
            obj: File instance.

        Returns:
            First 12 characters of file ID.
        """
        return obj.file_id[:12]
    file_id_short.short_description = 'File ID'  # type: ignore[attr-defined]

    def size_display(self, obj: File) -> str:
        """Display file size in human-readable format.

        Args:
            obj: File instance.

        Returns:
            Formatted size string (e.g., '1.5 MB', '234 KB').
        """
        size_bytes = obj.size_bytes

        # Convert to appropriate unit
        if size_bytes < 1024:
            return f'{size_bytes} B'
        if size_bytes < 1024 * 1024:  # noqa: WPS531
            return f'{size_bytes / 1024:.1f} KB'
        if size_bytes < 1024 * 1024 * 1024:  # noqa: WPS531
            return f'{size_bytes / (1024 * 1024):.1f} MB'
        return f'{size_bytes / (1024 * 1024 * 1024):.1f} GB'
    size_display.short_description = 'Size'  # type: ignore[attr-defined]

    def expiry_display(self, obj: File) -> str:
        """Display expiry with an expired marker.

        Args:
            obj: File instance.

        Returns:
            HTML formatted expiry.
        """
        if obj.expires_at is None:
            return 'Never'
        if obj.is_expired():
            color = '#dc3545'  # Red - awaiting sweep
        else:
            color = '#28a745'  # Green - live
        return format_html(
            '<span style="color: {color};">{expires}</span>',
            color=color,
            expires=timezone.localtime(obj.expires_at).strftime('%Y-%m-%d %H:%M'),
        )
    expiry_display.short_description = 'Expires'  # type: ignore[attr-defined]

    @override
    def has_add_permission(self, request: HttpRequest) -> bool:
        """Disable adding files via admin.

        Args:
            request: HTTP request.

        Returns:
            False - files are created by uploads only.
        """
        return False
