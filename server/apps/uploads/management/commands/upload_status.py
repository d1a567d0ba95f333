"""Management command to inspect chunked upload sessions."""

from typing import Any

from django.core.management.base import BaseCommand, CommandError

from server.apps.files.exceptions import (
    AssemblyInProgressError,
    NotFoundError,
    SessionExpiredError,
)
from server.apps.uploads.logic.session_manager import (
    get_session_stats,
    get_session_status,
)


class Command(BaseCommand):
    """Show one session's progress, or counts over all sessions."""

    help = 'Inspect upload sessions (pass a session id for details)'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            'session_id',
            nargs='?',
            help='Session to inspect',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Print session details.

        Args:
            args: Positional arguments (unused).
            options: Command options.

        Raises:
            CommandError: If the session cannot be inspected.
        """
        session_id = options['session_id']
        if not session_id:
            stats = get_session_stats()
            self.stdout.write(
                f'Sessions: {stats.total_sessions} total, '
                f'{stats.active_sessions} active, '
                f'{stats.expired_sessions} expired, '
                f'{stats.assembling_sessions} assembling',
            )
            self.stdout.write(f'Buffered chunk bytes: {stats.buffered_bytes}')
            return

        try:
            status = get_session_status(session_id)
        except (
            AssemblyInProgressError,
            NotFoundError,
            SessionExpiredError,
        ) as error:
            raise CommandError(str(error)) from error

        self.stdout.write(f'Session: {status.session_id}')
        self.stdout.write(f'File: {status.original_name} ({status.total_size} bytes)')
        self.stdout.write(
            f'Chunks: {len(status.uploaded_chunks)}/{status.expected_chunk_count} '
            f'of {status.chunk_size} bytes ({status.progress}%)',
        )
        if status.missing_chunks:
            missing = ', '.join(str(index) for index in status.missing_chunks)
            self.stdout.write(f'Missing chunks: {missing}')
        self.stdout.write(f'Expires at: {status.expires_at}')
        if status.is_assembling:
            self.stdout.write(self.style.WARNING('Assembly in progress'))
        elif status.is_complete:
            self.stdout.write(self.style.SUCCESS('Complete, ready to assemble'))
