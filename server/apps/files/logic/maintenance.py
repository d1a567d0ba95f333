"""Storage maintenance and monitoring.

Two maintenance levels run on a schedule:

- light: remove storage objects no metadata row refers to (finished
  files and chunk sets), once they are older than the orphan grace
  period so in-flight uploads are never touched
- aggressive: light, plus releasing abandoned assembly claims and
  compacting the database

Every step is isolated: a failing step is logged and recorded in the
report, and the remaining steps still run.
"""

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Final, Literal, final

from django.db import connection
from django.db.models import Count, Sum
from django.utils import timezone

from server.apps.files.conf import FileHostingConfig, get_config
from server.apps.files.logic.file_operations import (
    _get_storage,
    get_duplicate_stats,
)
from server.apps.files.models import File
from server.apps.uploads.models import UploadedChunk, UploadSession

if TYPE_CHECKING:
    from server.apps.files.infrastructure.storage import FileStorage, StoredObject

logger = logging.getLogger(__name__)

FILES_PREFIX: Final = 'files/'
CHUNKS_PREFIX: Final = 'chunks/'

# Keys looked up per metadata query while scanning storage
_LOOKUP_BATCH_SIZE: Final = 500

MaintenanceMode = Literal['light', 'aggressive']


@final
@dataclass(slots=True)
class MaintenanceReport:
    """Outcome of a maintenance run.

    In a dry run the counters report what would have been removed.
    """

    mode: MaintenanceMode
    dry_run: bool = False
    orphan_files_removed: int = 0
    orphan_chunk_sets_removed: int = 0
    bytes_reclaimed: int = 0
    claims_released: int = 0
    database_compacted: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Whether every step finished without error."""
        return not self.errors


@final
@dataclass(frozen=True, slots=True)
class StorageStats:
    """Snapshot of what the file hosting stores."""

    file_count: int
    stored_bytes: int
    expired_files: int
    expired_bytes: int
    permanent_files: int
    session_count: int
    expired_sessions: int
    buffered_chunk_bytes: int
    duplicate_groups: int
    duplicate_bytes: int


def _batched(names: list[str]) -> Iterator[list[str]]:
    for start in range(0, len(names), _LOOKUP_BATCH_SIZE):
        yield names[start:start + _LOOKUP_BATCH_SIZE]


def remove_orphan_files(
    report: MaintenanceReport,
    *,
    now: datetime,
    config: FileHostingConfig,
    storage: 'FileStorage',
) -> None:
    """Delete ``files/`` objects that have no file record.

    Args:
        report: Report to update.
        now: Reference time.
        config: File hosting configuration.
        storage: Storage backend.
    """
    cutoff = now - config.orphan_grace
    candidates: dict[str, 'StoredObject'] = {
        stored.name: stored
        for stored in storage.iter_objects(FILES_PREFIX)
        if stored.last_modified <= cutoff
    }

    referenced: set[str] = set()
    for batch in _batched(list(candidates)):
        referenced.update(
            File.objects.filter(file__in=batch).values_list('file', flat=True),
        )

    for name, stored in candidates.items():
        if name in referenced:
            continue
        if not report.dry_run:
            storage.delete(name)
        logger.info('Removed orphan object %s (%d bytes)', name, stored.size_bytes)
        report.orphan_files_removed += 1
        report.bytes_reclaimed += stored.size_bytes


def remove_orphan_chunks(
    report: MaintenanceReport,
    *,
    now: datetime,
    config: FileHostingConfig,
    storage: 'FileStorage',
) -> None:
    """Delete chunk sets whose upload session no longer exists.

    A chunk set is only removed once its newest object is older than
    the orphan grace period.

    Args:
        report: Report to update.
        now: Reference time.
        config: File hosting configuration.
        storage: Storage backend.
    """
    newest: dict[str, datetime] = {}
    sizes: dict[str, int] = {}
    for stored in storage.iter_objects(CHUNKS_PREFIX):
        session_id = stored.name[len(CHUNKS_PREFIX):].split('/', 1)[0]
        if session_id not in newest or stored.last_modified > newest[session_id]:
            newest[session_id] = stored.last_modified
        sizes[session_id] = sizes.get(session_id, 0) + stored.size_bytes

    cutoff = now - config.orphan_grace
    candidates = [
        session_id
        for session_id, modified in newest.items()
        if modified <= cutoff
    ]

    existing: set[str] = set()
    for batch in _batched(candidates):
        existing.update(
            UploadSession.objects.filter(
                session_id__in=batch,
            ).values_list('session_id', flat=True),
        )

    for session_id in candidates:
        if session_id in existing:
            continue
        if not report.dry_run:
            storage.delete_prefix(f'{CHUNKS_PREFIX}{session_id}/')
        logger.info('Removed orphan chunk set of session %s', session_id[:8])
        report.orphan_chunk_sets_removed += 1
        report.bytes_reclaimed += sizes[session_id]


def release_stale_claims(
    report: MaintenanceReport,
    *,
    now: datetime,
    config: FileHostingConfig,
) -> None:
    """Clear assembly claims older than the assembly lease.

    Args:
        report: Report to update.
        now: Reference time.
        config: File hosting configuration.
    """
    stale = UploadSession.objects.stale_claims(now - config.assembly_lease)
    if report.dry_run:
        report.claims_released = stale.count()
    else:
        report.claims_released = stale.update(assembly_started_at=None)
    if report.claims_released:
        logger.warning(
            'Released %d abandoned assembly claims',
            report.claims_released,
        )


def compact_database() -> bool:
    """Reclaim free space in the metadata database.

    Must run outside a transaction.

    Returns:
        True if the database vendor supports compaction.
    """
    vendor = connection.vendor
    with connection.cursor() as cursor:
        if vendor == 'sqlite':
            cursor.execute('VACUUM')
        elif vendor == 'postgresql':
            cursor.execute('VACUUM ANALYZE')
        elif vendor == 'mysql':
            tables = ', '.join(
                connection.ops.quote_name(model._meta.db_table)
                for model in (File, UploadSession, UploadedChunk)
            )
            cursor.execute(f'OPTIMIZE TABLE {tables}')
        else:
            logger.info('Database compaction not supported on %s', vendor)
            return False
    logger.info('Compacted %s database', vendor)
    return True


def _run_step(
    report: MaintenanceReport,
    name: str,
    step: Callable[[], object],
) -> None:
    try:
        step()
    except Exception as error:
        logger.exception('Maintenance step %s failed', name)
        report.errors.append(f'{name}: {error}')


def run_light_maintenance(
    *,
    dry_run: bool = False,
    config: FileHostingConfig | None = None,
) -> MaintenanceReport:
    """Remove orphaned storage objects.

    Args:
        dry_run: Only report what would be removed.
        config: File hosting configuration.

    Returns:
        MaintenanceReport, errors are collected rather than raised.
    """
    report = MaintenanceReport(mode='light', dry_run=dry_run)
    _run_light_steps(report, get_config(config))
    _log_report(report)
    return report


def run_aggressive_maintenance(
    *,
    dry_run: bool = False,
    config: FileHostingConfig | None = None,
) -> MaintenanceReport:
    """Run light maintenance, release stale claims and compact the database.

    Args:
        dry_run: Only report, compaction is skipped.
        config: File hosting configuration.

    Returns:
        MaintenanceReport, errors are collected rather than raised.
    """
    config = get_config(config)
    report = MaintenanceReport(mode='aggressive', dry_run=dry_run)
    _run_light_steps(report, config)
    _run_step(
        report,
        'release_stale_claims',
        lambda: release_stale_claims(report, now=timezone.now(), config=config),
    )
    if not dry_run:
        def _compact() -> None:  # noqa: WPS430
            report.database_compacted = compact_database()

        _run_step(report, 'compact_database', _compact)
    _log_report(report)
    return report


def _run_light_steps(
    report: MaintenanceReport,
    config: FileHostingConfig,
) -> None:
    now = timezone.now()
    storage = _get_storage()
    _run_step(
        report,
        'remove_orphan_files',
        lambda: remove_orphan_files(
            report,
            now=now,
            config=config,
            storage=storage,
        ),
    )
    _run_step(
        report,
        'remove_orphan_chunks',
        lambda: remove_orphan_chunks(
            report,
            now=now,
            config=config,
            storage=storage,
        ),
    )


def _log_report(report: MaintenanceReport) -> None:
    logger.info(
        '%s maintenance finished%s: %d orphan files, %d orphan chunk sets, '
        '%d bytes, %d claims released, %d errors',
        report.mode.capitalize(),
        ' (dry run)' if report.dry_run else '',
        report.orphan_files_removed,
        report.orphan_chunk_sets_removed,
        report.bytes_reclaimed,
        report.claims_released,
        len(report.errors),
    )


def collect_storage_stats() -> StorageStats:
    """Gather counts and sizes of stored files and sessions.

    Returns:
        StorageStats snapshot taken from metadata.
    """
    now = timezone.now()
    totals = File.objects.aggregate(count=Count('id'), size=Sum('size_bytes'))
    expired = File.objects.expired(now).aggregate(
        count=Count('id'),
        size=Sum('size_bytes'),
    )
    duplicates = get_duplicate_stats()
    return StorageStats(
        file_count=totals['count'],
        stored_bytes=totals['size'] or 0,
        expired_files=expired['count'],
        expired_bytes=expired['size'] or 0,
        permanent_files=File.objects.filter(expires_at__isnull=True).count(),
        session_count=UploadSession.objects.count(),
        expired_sessions=UploadSession.objects.expired(now).count(),
        buffered_chunk_bytes=(
            UploadedChunk.objects.aggregate(total=Sum('size_bytes'))['total']
            or 0
        ),
        duplicate_groups=duplicates.duplicate_groups,
        duplicate_bytes=duplicates.reclaimable_bytes,
    )


def check_resources(
    stats: StorageStats | None = None,
    config: FileHostingConfig | None = None,
) -> list[str]:
    """Compare storage usage against configured thresholds.

    Args:
        stats: Snapshot to check, collected when omitted.
        config: File hosting configuration.

    Returns:
        Warning messages, empty when everything is within limits.
    """
    config = get_config(config)
    stats = stats or collect_storage_stats()
    warnings: list[str] = []

    used_bytes = stats.stored_bytes + stats.buffered_chunk_bytes
    if config.storage_warning_bytes and used_bytes > config.storage_warning_bytes:
        warnings.append(
            f'High storage usage: {used_bytes} of '
            f'{config.storage_warning_bytes} bytes',
        )
    if stats.expired_files > config.sweep_batch_size:
        warnings.append(
            f'Expired files piling up: {stats.expired_files} awaiting sweep',
        )
    if stats.expired_sessions > config.sweep_batch_size:
        warnings.append(
            f'Expired upload sessions piling up: {stats.expired_sessions} '
            'awaiting sweep',
        )

    for warning in warnings:
        logger.warning('Resource warning: %s', warning)
    return warnings
