"""Chunked upload session management.

Tracks partially uploaded files, accepts their chunks in any order and
assembles complete uploads into hosted files.

Chunks are stored as one object per index under
``chunks/<session_id>/``. Each received index is a separate
``UploadedChunk`` row, so concurrent chunk arrivals never overwrite
each other's progress. Assembly is guarded by a per-session claim
(``assembly_started_at``) taken with a conditional update.
"""

import itertools
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, BinaryIO, Final, final

from django.core.files.base import ContentFile
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Q, Sum
from django.utils import timezone

from server.apps.files.conf import FileHostingConfig, get_config
from server.apps.files.exceptions import (
    AssemblyInProgressError,
    ChunkSizeMismatchError,
    InvalidArgumentError,
    InvalidChunkIndexError,
    MetadataError,
    SessionExpiredError,
    SessionNotFoundError,
    StorageReadError,
    StorageWriteError,
)
from server.apps.files.infrastructure.metadata import (
    IterableReader,
    build_chunk_path,
    build_chunk_prefix,
    build_storage_path,
    detect_mime_type,
)
from server.apps.files.logic.expiration import purge_session
from server.apps.files.logic.file_operations import (
    _get_storage,
    create_file_record,
    generate_file_id,
    read_stored_blocks,
    resolve_expiry,
    validate_file_ttl,
    write_content,
)
from server.apps.files.logic.rate_limiting import UPLOADS_SCOPE, rate_limited
from server.apps.files.logic.validation import validate_filename
from server.apps.files.models import File
from server.apps.uploads.models import UploadedChunk, UploadSession

if TYPE_CHECKING:
    from server.apps.files.infrastructure.storage import FileStorage

logger = logging.getLogger(__name__)

# Session ID length in bytes (generates 32 hex chars)
_SESSION_ID_BYTES: Final = 16

_MB: Final = 1024 * 1024
_BASE_CHUNK_SIZE: Final = _MB
_LARGE_FILE_SIZE: Final = 500 * _MB
_HUGE_FILE_SIZE: Final = 1024 * _MB


@final
@dataclass(frozen=True, slots=True)
class ChunkReceipt:
    """Result of accepting a chunk."""

    index: int
    accepted: bool
    remaining_count: int
    is_complete: bool


@final
@dataclass(frozen=True, slots=True)
class SessionStatus:
    """Snapshot of a session, used by clients to resume an upload."""

    session_id: str
    original_name: str
    total_size: int
    chunk_size: int
    expected_chunk_count: int
    uploaded_chunks: list[int]
    missing_chunks: list[int]
    next_chunk: int | None
    progress: float
    is_complete: bool
    is_assembling: bool
    expires_at: datetime


@final
@dataclass(frozen=True, slots=True)
class SessionStats:
    """Counts over all upload sessions."""

    active_sessions: int
    expired_sessions: int
    assembling_sessions: int
    total_sessions: int
    buffered_bytes: int


def generate_session_id() -> str:
    """Generate an unused session id.

    Returns:
        32 character hex string.
    """
    session_id = secrets.token_hex(_SESSION_ID_BYTES)
    while UploadSession.objects.filter(session_id=session_id).exists():
        session_id = secrets.token_hex(_SESSION_ID_BYTES)
    return session_id


def optimal_chunk_size(total_size: int) -> int:
    """Suggest a chunk size for a file.

    1 MB by default, 2 MB above 500 MB and 5 MB above 1 GB.

    Args:
        total_size: File size in bytes.

    Returns:
        Chunk size in bytes.
    """
    if total_size > _HUGE_FILE_SIZE:
        return _BASE_CHUNK_SIZE * 5
    if total_size > _LARGE_FILE_SIZE:
        return _BASE_CHUNK_SIZE * 2
    return _BASE_CHUNK_SIZE


def requires_chunked_upload(
    size: int,
    config: FileHostingConfig | None = None,
) -> bool:
    """Check whether a file is too large for a single-shot upload."""
    return size > get_config(config).chunked_upload_threshold


@rate_limited(UPLOADS_SCOPE)
def create_session(  # noqa: WPS211
    original_name: str,
    total_size: int,
    chunk_size: int | None = None,
    ttl: timedelta | None = None,
    *,
    mime_type: str = '',
    file_ttl: timedelta | None = None,
    config: FileHostingConfig | None = None,
) -> UploadSession:
    """Open a new chunked upload session.

    Args:
        original_name: Filename of the file being uploaded, stored
            sanitized.
        total_size: Size of the whole file in bytes.
        chunk_size: Size of every chunk but the last, suggested by
            ``optimal_chunk_size`` when omitted.
        ttl: Session lifetime, the configured default when omitted.
        mime_type: MIME type of the file, guessed from the name if empty.
        file_ttl: Lifetime of the assembled file.
        config: File hosting configuration.

    Returns:
        Created UploadSession with no chunks.

    Raises:
        InvalidArgumentError: If any parameter is out of range or the
            filename is rejected.
        MetadataError: If the session cannot be persisted.
    """
    config = get_config(config)
    original_name = validate_filename(original_name, config)
    if total_size <= 0:
        raise InvalidArgumentError('Total size must be positive')
    if total_size > config.max_file_size:
        raise InvalidArgumentError(
            f'File exceeds maximum size of {config.max_file_size} bytes',
        )
    if chunk_size is None:
        chunk_size = optimal_chunk_size(total_size)
    if chunk_size <= 0:
        raise InvalidArgumentError('Chunk size must be positive')
    if ttl is not None and ttl <= timedelta(0):
        raise InvalidArgumentError('Session lifetime must be positive')
    validate_file_ttl(file_ttl, permanent=False, config=config)

    try:
        session = UploadSession.objects.create(
            session_id=generate_session_id(),
            original_name=original_name,
            mime_type=mime_type or detect_mime_type(original_name),
            total_size=total_size,
            chunk_size=chunk_size,
            file_ttl=file_ttl,
            expires_at=timezone.now() + (ttl or config.upload_session_ttl),
        )
    except DatabaseError as error:
        logger.exception('Failed to create upload session')
        raise MetadataError('Failed to create upload session') from error

    logger.info(
        'Created upload session %s for %s (%d bytes in %d chunks)',
        session.session_id[:8],
        original_name,
        total_size,
        session.expected_chunk_count,
    )
    return session


def get_session(session_id: str) -> UploadSession:
    """Get a session by id.

    Raises:
        SessionNotFoundError: If the session does not exist.
    """
    try:
        return UploadSession.objects.get(session_id=session_id)
    except UploadSession.DoesNotExist as error:
        raise SessionNotFoundError(
            f'Upload session not found: {session_id}',
        ) from error


def _get_live_session(
    session_id: str,
    config: FileHostingConfig,
) -> UploadSession:
    session = get_session(session_id)
    if session.is_expired():
        if _has_fresh_claim(session, config):
            # The running assembly still reads the chunks
            raise AssemblyInProgressError(
                f'Upload session is being assembled: {session_id}',
            )
        logger.info('Discarding expired upload session %s', session_id[:8])
        purge_session(session)
        raise SessionExpiredError(f'Upload session has expired: {session_id}')
    return session


def _has_fresh_claim(
    session: UploadSession,
    config: FileHostingConfig,
    now: datetime | None = None,
) -> bool:
    if session.assembly_started_at is None:
        return False
    now = now or timezone.now()
    return session.assembly_started_at > now - config.assembly_lease


def _read_chunk(content: bytes | BinaryIO, expected_length: int) -> bytes:
    if isinstance(content, bytes | bytearray | memoryview):
        return bytes(content)
    # One byte past the expected length is enough to detect oversize
    return content.read(expected_length + 1)


@rate_limited(UPLOADS_SCOPE)
def accept_chunk(
    session_id: str,
    index: int,
    content: bytes | BinaryIO,
    *,
    config: FileHostingConfig | None = None,
) -> ChunkReceipt:
    """Store one chunk of an upload session.

    Chunks may arrive in any order and concurrently. A repeated index
    overwrites the stored bytes but is counted once.

    Args:
        session_id: Upload session id.
        index: Zero-based chunk position.
        content: Chunk bytes or a binary file object.
        config: File hosting configuration.

    Returns:
        ChunkReceipt with the remaining chunk count.

    Raises:
        SessionNotFoundError: If the session does not exist.
        SessionExpiredError: If the session expired (it is discarded).
        InvalidChunkIndexError: If the index is out of range.
        ChunkSizeMismatchError: If the chunk has the wrong length.
        AssemblyInProgressError: If the session is being assembled.
        StorageWriteError: If the chunk cannot be stored.
        MetadataError: If the chunk cannot be recorded.
    """
    config = get_config(config)
    session = _get_live_session(session_id, config)

    expected_count = session.expected_chunk_count
    if index < 0 or index >= expected_count:
        raise InvalidChunkIndexError(index, expected_count)
    if _has_fresh_claim(session, config):
        raise AssemblyInProgressError(
            f'Upload session is being assembled: {session_id}',
        )

    expected_length = session.expected_chunk_length(index)
    data = _read_chunk(content, expected_length)
    if len(data) != expected_length:
        raise ChunkSizeMismatchError(index, expected_length, len(data))

    storage = _get_storage()
    chunk_path = build_chunk_path(session_id, index)
    try:
        # A failed write leaves any earlier copy of this chunk intact
        storage.save(chunk_path, ContentFile(data))
    except Exception as error:
        raise StorageWriteError(
            f'Failed to store chunk {index} of session {session_id}',
        ) from error

    _record_chunk(session, index, expected_length, storage)

    remaining = expected_count - session.received_count()
    logger.debug(
        'Accepted chunk %d of session %s, %d remaining',
        index,
        session_id[:8],
        remaining,
    )
    return ChunkReceipt(
        index=index,
        accepted=True,
        remaining_count=remaining,
        is_complete=remaining == 0,
    )


def _record_chunk(
    session: UploadSession,
    index: int,
    size_bytes: int,
    storage: 'FileStorage',
) -> None:
    chunk_path = build_chunk_path(session.session_id, index)
    try:
        with transaction.atomic():
            # Repeated indexes hit the unique constraint and are skipped
            UploadedChunk.objects.bulk_create(
                [UploadedChunk(session=session, index=index, size_bytes=size_bytes)],
                ignore_conflicts=True,
            )
            session_exists = UploadSession.objects.filter(pk=session.pk).exists()
    except IntegrityError:
        session_exists = False
    except DatabaseError as error:
        raise MetadataError(
            f'Failed to record chunk {index} of session {session.session_id}',
        ) from error

    if not session_exists:
        # Session was discarded while the chunk was being written
        storage.rollback_upload(chunk_path)
        raise SessionNotFoundError(
            f'Upload session not found: {session.session_id}',
        )


def finalize_if_complete(
    session_id: str,
    *,
    config: FileHostingConfig | None = None,
) -> File | None:
    """Assemble a complete session into a hosted file.

    Nothing happens for an incomplete session. Otherwise the session
    is claimed, its chunks are streamed in index order into the final
    object while the checksum is computed, and the file record is
    created in the same transaction that deletes the session. If
    anything fails before that commit, the partial object is removed
    and the claim released, so a retry assembles again.

    Args:
        session_id: Upload session id.
        config: File hosting configuration.

    Returns:
        Created File, or None if chunks are still missing.

    Raises:
        SessionNotFoundError: If the session does not exist.
        SessionExpiredError: If the session expired (it is discarded).
        AssemblyInProgressError: If another finalize holds the claim.
        StorageReadError: If a chunk cannot be read back.
        StorageWriteError: If the final object cannot be written.
        MetadataError: If the file record cannot be committed.
    """
    config = get_config(config)
    session = _get_live_session(session_id, config)
    if not session.is_complete():
        return None

    claimed_at = _claim_session(session, config)
    storage = _get_storage()
    logger.info('Assembling upload session %s', session_id[:8])
    try:
        file_instance = _assemble(session, storage, config)
    except Exception:
        logger.exception('Assembly failed for upload session %s', session_id[:8])
        _release_claim(session, claimed_at)
        raise

    try:
        storage.delete_prefix(build_chunk_prefix(session_id))
    except Exception:
        logger.exception(
            'Chunks of session %s left behind after assembly',
            session_id[:8],
        )

    logger.info(
        'Assembled upload session %s into file %s',
        session_id[:8],
        file_instance.file_id[:12],
    )
    return file_instance


def _claim_session(session: UploadSession, config: FileHostingConfig) -> datetime:
    now = timezone.now()
    claimable = Q(assembly_started_at__isnull=True) | Q(
        assembly_started_at__lte=now - config.assembly_lease,
    )
    try:
        claimed = (
            UploadSession.objects.filter(pk=session.pk)
            .filter(claimable)
            .update(assembly_started_at=now)
        )
    except DatabaseError as error:
        raise MetadataError(
            f'Failed to claim upload session: {session.session_id}',
        ) from error

    if not claimed:
        if not UploadSession.objects.filter(pk=session.pk).exists():
            raise SessionNotFoundError(
                f'Upload session not found: {session.session_id}',
            )
        raise AssemblyInProgressError(
            f'Upload session is being assembled: {session.session_id}',
        )
    session.assembly_started_at = now
    return now


def _release_claim(session: UploadSession, claimed_at: datetime) -> None:
    try:
        UploadSession.objects.filter(
            pk=session.pk,
            assembly_started_at=claimed_at,
        ).update(assembly_started_at=None)
    except DatabaseError:
        # The claim goes stale after the assembly lease anyway
        logger.exception(
            'Failed to release claim on session %s',
            session.session_id[:8],
        )


def _assemble(
    session: UploadSession,
    storage: 'FileStorage',
    config: FileHostingConfig,
) -> File:
    expires_at = resolve_expiry(session.file_ttl, config=config)
    file_id = generate_file_id()
    storage_path = build_storage_path(file_id, session.original_name)
    blocks = itertools.chain.from_iterable(
        read_stored_blocks(storage, build_chunk_path(session.session_id, index))
        for index in range(session.expected_chunk_count)
    )
    stored = write_content(storage, storage_path, IterableReader(blocks))

    if stored.size_bytes != session.total_size:
        storage.rollback_upload(stored.storage_path)
        raise StorageReadError(
            f'Assembled size mismatch for session {session.session_id}. '
            f'Expected: {session.total_size}, got: {stored.size_bytes}',
        )

    try:
        with transaction.atomic():
            file_instance = create_file_record(
                storage,
                stored,
                file_id=file_id,
                original_name=session.original_name,
                mime_type=session.mime_type,
                expires_at=expires_at,
                config=config,
            )
            # Cascades to UploadedChunk rows
            UploadSession.objects.filter(pk=session.pk).delete()
    except DatabaseError as error:
        storage.rollback_upload(stored.storage_path)
        raise MetadataError(
            f'Failed to commit assembled file for session {session.session_id}',
        ) from error
    return file_instance


def get_session_status(session_id: str) -> SessionStatus:
    """Describe a session so a client can resume it.

    Args:
        session_id: Upload session id.

    Returns:
        SessionStatus snapshot.

    Raises:
        SessionNotFoundError: If the session does not exist.
        SessionExpiredError: If the session expired (it is discarded).
        AssemblyInProgressError: If the session expired while being
            assembled.
    """
    config = get_config()
    session = _get_live_session(session_id, config)
    uploaded = session.received_indices()
    missing = session.missing_chunks(uploaded)
    return SessionStatus(
        session_id=session.session_id,
        original_name=session.original_name,
        total_size=session.total_size,
        chunk_size=session.chunk_size,
        expected_chunk_count=session.expected_chunk_count,
        uploaded_chunks=uploaded,
        missing_chunks=missing,
        next_chunk=missing[0] if missing else None,
        progress=session.progress(len(uploaded)),
        is_complete=not missing,
        is_assembling=_has_fresh_claim(session, config),
        expires_at=session.expires_at,
    )


def cancel_session(session_id: str) -> None:
    """Discard a session and its stored chunks.

    Raises:
        SessionNotFoundError: If the session does not exist.
        AssemblyInProgressError: If the session is being assembled.
    """
    session = get_session(session_id)
    if _has_fresh_claim(session, get_config()):
        raise AssemblyInProgressError(
            f'Upload session is being assembled: {session_id}',
        )
    purge_session(session)
    logger.info('Cancelled upload session %s', session_id[:8])


def get_session_stats(
    config: FileHostingConfig | None = None,
) -> SessionStats:
    """Count sessions by state and the chunk bytes they hold."""
    config = get_config(config)
    now = timezone.now()
    sessions = UploadSession.objects.all()
    return SessionStats(
        active_sessions=sessions.filter(expires_at__gt=now).count(),
        expired_sessions=sessions.expired(now).count(),
        assembling_sessions=sessions.claimed_since(
            now - config.assembly_lease,
        ).count(),
        total_sessions=sessions.count(),
        buffered_bytes=(
            UploadedChunk.objects.aggregate(total=Sum('size_bytes'))['total']
            or 0
        ),
    )
