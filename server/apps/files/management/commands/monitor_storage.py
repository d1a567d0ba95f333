"""Management command to report storage usage."""

from typing import Any

from django.core.management.base import BaseCommand
from django.template.defaultfilters import filesizeformat

from server.apps.files.conf import FileHostingConfig, get_config
from server.apps.files.logic.jobs import run_job
from server.apps.files.logic.maintenance import (
    StorageStats,
    check_resources,
    collect_storage_stats,
)


def _collect(config: FileHostingConfig) -> tuple[StorageStats, list[str]]:
    stats = collect_storage_stats()
    return stats, check_resources(stats, config=config)


class Command(BaseCommand):
    """Print storage statistics and threshold warnings."""

    help = 'Report storage usage and resource warnings'

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the monitor.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        config = get_config()
        outcome = run_job('monitor_storage', _collect, config=config)
        if outcome is None:
            self.stdout.write(
                self.style.WARNING('Monitor already running, skipped'),
            )
            return

        stats, warnings = outcome
        self.stdout.write(
            f'Files: {stats.file_count} '
            f'({filesizeformat(stats.stored_bytes)}), '
            f'{stats.permanent_files} permanent',
        )
        self.stdout.write(
            f'Expired files awaiting sweep: {stats.expired_files} '
            f'({filesizeformat(stats.expired_bytes)})',
        )
        self.stdout.write(
            f'Upload sessions: {stats.session_count}, '
            f'{stats.expired_sessions} expired, '
            f'{filesizeformat(stats.buffered_chunk_bytes)} in chunks',
        )
        self.stdout.write(
            f'Duplicate groups: {stats.duplicate_groups} '
            f'({filesizeformat(stats.duplicate_bytes)} redundant)',
        )

        if warnings:
            for warning in warnings:
                self.stdout.write(self.style.WARNING(f'Warning: {warning}'))
        else:
            self.stdout.write(self.style.SUCCESS('No resource warnings'))
