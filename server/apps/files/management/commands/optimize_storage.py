"""Management command to run storage maintenance."""

from typing import Any

from django.core.management.base import BaseCommand

from server.apps.files.conf import get_config
from server.apps.files.logic.jobs import run_job
from server.apps.files.logic.maintenance import (
    run_aggressive_maintenance,
    run_light_maintenance,
)


class Command(BaseCommand):
    """Remove orphaned storage objects, optionally compact the database.

    Light mode is meant to run every 4 hours, ``--aggressive`` daily
    at a quiet hour.
    """

    help = 'Remove orphaned objects from storage (--aggressive to compact)'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--aggressive',
            action='store_true',
            help='Also release stale assembly claims and compact the database',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be removed without removing',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute maintenance.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        if options['aggressive']:
            func = run_aggressive_maintenance
        else:
            func = run_light_maintenance

        config = get_config()
        # Both modes share one flag so they never run side by side
        report = run_job(
            'optimize_storage',
            func,
            config=config,
            dry_run=options['dry_run'],
        )
        if report is None:
            self.stdout.write(
                self.style.WARNING('Maintenance already running, skipped'),
            )
            return

        verb = 'Would remove' if report.dry_run else 'Removed'
        self.stdout.write(
            f'{verb} {report.orphan_files_removed} orphan files and '
            f'{report.orphan_chunk_sets_removed} orphan chunk sets '
            f'({report.bytes_reclaimed} bytes)',
        )
        if report.mode == 'aggressive':
            self.stdout.write(
                f'Released {report.claims_released} stale claims, '
                f'database compacted: {report.database_compacted}',
            )

        for error in report.errors:
            self.stderr.write(self.style.ERROR(f'Step failed: {error}'))
        if report.succeeded:
            self.stdout.write(self.style.SUCCESS('Maintenance complete'))
