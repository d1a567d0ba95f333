"""Management command to purge expired files and upload sessions."""

from typing import Any

from django.core.management.base import BaseCommand

from server.apps.files.conf import get_config
from server.apps.files.logic.expiration import run_sweep
from server.apps.files.logic.jobs import run_job


class Command(BaseCommand):
    """Delete files and upload sessions whose expiry has passed.

    Meant to run hourly from cron.
    """

    help = 'Purge expired files and upload sessions'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without deleting',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=None,
            help='Max records per kind to process (default: from settings)',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the sweep.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        dry_run = options['dry_run']
        config = get_config()

        result = run_job(
            'sweep_expired',
            run_sweep,
            config=config,
            batch_size=options['batch_size'],
            dry_run=dry_run,
        )
        if result is None:
            self.stdout.write(
                self.style.WARNING('Sweep already running, skipped'),
            )
            return

        if dry_run:
            self.stdout.write(
                self.style.SUCCESS(
                    f'Would purge {result.files_deleted} files and '
                    f'{result.sessions_deleted} sessions '
                    f'({result.bytes_freed} bytes)',
                ),
            )
            return

        message = (
            f'Purged {result.files_deleted} files and '
            f'{result.sessions_deleted} sessions, {result.failed} failed'
        )
        if result.failed:
            self.stderr.write(self.style.ERROR(message))
        else:
            self.stdout.write(self.style.SUCCESS(message))
