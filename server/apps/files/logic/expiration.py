"""Expiration sweeper for hosted files and upload sessions.

The sweeper is the only component that removes expired records. It
deletes the storage object first and the metadata row second, so an
interrupted pass never leaves a row pointing at missing bytes; the
next pass treats the already-missing object as deleted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, final

from django.db import DatabaseError
from django.utils import timezone

from server.apps.files.conf import FileHostingConfig, get_config
from server.apps.files.exceptions import (
    FileHostingError,
    MetadataError,
    StorageWriteError,
)
from server.apps.files.infrastructure.metadata import build_chunk_prefix
from server.apps.files.logic.file_operations import _get_storage, remove_file
from server.apps.files.models import File
from server.apps.uploads.models import UploadSession

if TYPE_CHECKING:
    from server.apps.files.infrastructure.storage import FileStorage

logger = logging.getLogger(__name__)


@final
@dataclass(slots=True)
class SweepResult:
    """Outcome of a sweeper pass.

    In a dry run the counters report what would have been deleted.
    """

    files_deleted: int = 0
    sessions_deleted: int = 0
    failed: int = 0
    bytes_freed: int = 0
    dry_run: bool = False

    def merge(self, other: 'SweepResult') -> None:
        """Add the counters of another pass to this one."""
        self.files_deleted += other.files_deleted
        self.sessions_deleted += other.sessions_deleted
        self.failed += other.failed
        self.bytes_freed += other.bytes_freed


def purge_file(
    file_instance: File,
    storage: 'FileStorage | None' = None,
) -> int:
    """Remove a file's bytes and then its record.

    Args:
        file_instance: File to remove.
        storage: Storage backend, defaults to the configured one.

    Returns:
        Number of bytes freed.

    Raises:
        StorageWriteError: If the storage delete fails (row kept).
        MetadataError: If the row delete fails (bytes already gone).
    """
    remove_file(file_instance, storage or _get_storage())
    logger.info(
        'Purged file %s (%d bytes)',
        file_instance.file_id[:12],
        file_instance.size_bytes,
    )
    return file_instance.size_bytes


def purge_session(
    session: UploadSession,
    storage: 'FileStorage | None' = None,
) -> None:
    """Remove a session's chunk objects and then its rows.

    Args:
        session: Upload session to remove.
        storage: Storage backend, defaults to the configured one.

    Raises:
        StorageWriteError: If the chunk objects cannot be deleted.
        MetadataError: If the session rows cannot be deleted.
    """
    storage = storage or _get_storage()
    prefix = build_chunk_prefix(session.session_id)
    try:
        storage.delete_prefix(prefix)
    except Exception as error:
        raise StorageWriteError(
            f'Failed to delete chunks under {prefix}',
        ) from error

    try:
        # Cascades to UploadedChunk rows
        session.delete()
    except DatabaseError as error:
        raise MetadataError(
            f'Failed to delete upload session: {session.session_id}',
        ) from error
    logger.info('Purged upload session %s', session.session_id[:8])


def sweep_expired_files(
    *,
    batch_size: int | None = None,
    dry_run: bool = False,
    now: datetime | None = None,
    config: FileHostingConfig | None = None,
) -> SweepResult:
    """Delete files whose expiry has passed, oldest expiry first.

    Files without an expiry are never selected. A failure on one file
    is logged and counted, and the pass continues with the next.

    Args:
        batch_size: Max files to process, the configured size if omitted.
        dry_run: Only report what would be deleted.
        now: Reference time, defaults to the current time.
        config: File hosting configuration.

    Returns:
        SweepResult with file counters filled in.
    """
    config = get_config(config)
    now = now or timezone.now()
    limit = batch_size or config.sweep_batch_size
    result = SweepResult(dry_run=dry_run)
    storage = _get_storage()

    expired = File.objects.expired(now).order_by('expires_at')[:limit]
    for file_instance in expired:
        if dry_run:
            logger.info(
                'Would purge file %s (expired %s)',
                file_instance.file_id[:12],
                file_instance.expires_at,
            )
            result.files_deleted += 1
            result.bytes_freed += file_instance.size_bytes
            continue
        try:
            result.bytes_freed += purge_file(file_instance, storage)
        except FileHostingError:
            logger.exception(
                'Failed to purge expired file %s',
                file_instance.file_id[:12],
            )
            result.failed += 1
        else:
            result.files_deleted += 1

    return result


def sweep_expired_sessions(
    *,
    batch_size: int | None = None,
    dry_run: bool = False,
    now: datetime | None = None,
    config: FileHostingConfig | None = None,
) -> SweepResult:
    """Delete upload sessions whose expiry has passed.

    Sessions whose assembly claim is younger than the assembly lease
    are skipped, so a running finalize is never pulled from under
    itself. They are picked up once the claim goes stale.

    Args:
        batch_size: Max sessions to process, the configured size if omitted.
        dry_run: Only report what would be deleted.
        now: Reference time, defaults to the current time.
        config: File hosting configuration.

    Returns:
        SweepResult with session counters filled in.
    """
    config = get_config(config)
    now = now or timezone.now()
    limit = batch_size or config.sweep_batch_size
    result = SweepResult(dry_run=dry_run)
    storage = _get_storage()

    expired = (
        UploadSession.objects.expired(now)
        .exclude(assembly_started_at__gt=now - config.assembly_lease)
        .order_by('expires_at')[:limit]
    )
    for session in expired:
        if dry_run:
            logger.info('Would purge upload session %s', session.session_id[:8])
            result.sessions_deleted += 1
            continue
        try:
            purge_session(session, storage)
        except FileHostingError:
            logger.exception(
                'Failed to purge expired upload session %s',
                session.session_id[:8],
            )
            result.failed += 1
        else:
            result.sessions_deleted += 1

    return result


def run_sweep(
    *,
    batch_size: int | None = None,
    dry_run: bool = False,
    config: FileHostingConfig | None = None,
) -> SweepResult:
    """Run one sweeper pass over files and then sessions.

    Args:
        batch_size: Max records per kind.
        dry_run: Only report what would be deleted.
        config: File hosting configuration.

    Returns:
        Combined SweepResult.
    """
    config = get_config(config)
    now = timezone.now()
    result = sweep_expired_files(
        batch_size=batch_size,
        dry_run=dry_run,
        now=now,
        config=config,
    )
    result.merge(sweep_expired_sessions(
        batch_size=batch_size,
        dry_run=dry_run,
        now=now,
        config=config,
    ))
    logger.info(
        'Sweep finished%s: %d files, %d sessions, %d failed, %d bytes freed',
        ' (dry run)' if dry_run else '',
        result.files_deleted,
        result.sessions_deleted,
        result.failed,
        result.bytes_freed,
    )
    return result
