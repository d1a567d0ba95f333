"""Business logic for hosted file operations."""

import logging
import secrets
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, BinaryIO, Final, final

from django.core.files.base import File as DjangoFile
from django.core.files.storage import default_storage
from django.db import DatabaseError, transaction
from django.db.models import Count
from django.utils import timezone

from server.apps.files.conf import FileHostingConfig, get_config
from server.apps.files.exceptions import (
    FileHostingError,
    InvalidArgumentError,
    MetadataError,
    NotFoundError,
    StorageReadError,
    StorageWriteError,
)
from server.apps.files.infrastructure.metadata import (
    ChecksumReader,
    build_storage_path,
    calculate_stream_checksum,
    detect_mime_type,
)
from server.apps.files.logic.rate_limiting import (
    DOWNLOADS_SCOPE,
    UPLOADS_SCOPE,
    rate_limited,
)
from server.apps.files.logic.validation import validate_filename
from server.apps.files.models import File

if TYPE_CHECKING:
    from server.apps.files.infrastructure.storage import FileStorage

logger = logging.getLogger(__name__)

# 32 bytes generate 64 hex chars
_FILE_ID_BYTES: Final = 32
_DELETE_TOKEN_BYTES: Final = 32
_READ_BLOCK_SIZE: Final = 64 * 1024


@final
@dataclass(frozen=True, slots=True)
class StoredContent:
    """Result of streaming bytes into storage."""

    storage_path: str
    checksum_sha256: str
    size_bytes: int


@final
@dataclass(frozen=True, slots=True)
class DuplicateStats:
    """Summary of live files sharing identical content."""

    duplicate_groups: int
    duplicate_files: int
    reclaimable_bytes: int


def _get_storage() -> 'FileStorage':
    """Get the configured default storage backend.

    Returns:
        FileStorage instance with proper S3 configuration.
    """
    return default_storage  # type: ignore[return-value]


def generate_file_id() -> str:
    """Generate a unique public file id.

    Returns:
        64 character hex string not used by any file.
    """
    file_id = secrets.token_hex(_FILE_ID_BYTES)
    while File.objects.filter(file_id=file_id).exists():
        file_id = secrets.token_hex(_FILE_ID_BYTES)
    return file_id


def generate_delete_token(config: FileHostingConfig) -> str:
    """Generate an owner delete token if tokens are enabled.

    Args:
        config: File hosting configuration.

    Returns:
        64 character hex token, or empty string when disabled.
    """
    if not config.generate_delete_tokens:
        return ''
    return secrets.token_hex(_DELETE_TOKEN_BYTES)


def validate_file_ttl(
    ttl: timedelta | None,
    *,
    permanent: bool,
    config: FileHostingConfig,
) -> None:
    """Validate a requested file lifetime against configured bounds.

    Args:
        ttl: Requested lifetime, None for the default.
        permanent: Whether the file should never expire.
        config: File hosting configuration.

    Raises:
        InvalidArgumentError: If the lifetime is not allowed.
    """
    if permanent:
        if not config.allow_permanent_files:
            raise InvalidArgumentError('Permanent files are not allowed')
        return
    if ttl is None:
        return
    if ttl <= timedelta(0):
        raise InvalidArgumentError('File lifetime must be positive')
    if ttl > config.max_file_ttl:
        raise InvalidArgumentError(
            f'File lifetime exceeds maximum of {config.max_file_ttl}',
        )


def resolve_expiry(
    ttl: timedelta | None,
    *,
    permanent: bool = False,
    config: FileHostingConfig,
) -> datetime | None:
    """Compute the expiry time for a new file.

    Args:
        ttl: Requested lifetime, None for the configured default.
        permanent: Whether the file should never expire.
        config: File hosting configuration.

    Returns:
        Expiry time, or None for a permanent file.

    Raises:
        InvalidArgumentError: If the lifetime is not allowed.
    """
    validate_file_ttl(ttl, permanent=permanent, config=config)
    if permanent:
        return None
    return timezone.now() + (ttl or config.default_file_ttl)


def write_content(
    storage: 'FileStorage',
    storage_path: str,
    source: Any,
) -> StoredContent:
    """Stream bytes into storage while computing their checksum.

    The source is read once; nothing is buffered beyond the backend's
    upload part size. On any failure the partial object is deleted
    before the error is raised.

    Args:
        storage: Storage backend.
        storage_path: Target key.
        source: Object with a ``read(size)`` method.

    Returns:
        StoredContent with checksum and byte count.

    Raises:
        StorageWriteError: If the backend write fails.
        FileHostingError: Errors raised while producing the source bytes
            (e.g. StorageReadError during assembly) propagate unchanged.
    """
    reader = ChecksumReader(source)
    try:
        saved_name = storage.save(storage_path, reader)
    except FileHostingError:
        storage.rollback_upload(storage_path)
        raise
    except Exception as error:
        storage.rollback_upload(storage_path)
        raise StorageWriteError(
            f'Failed to write object to storage: {storage_path}',
        ) from error

    return StoredContent(
        storage_path=saved_name,
        checksum_sha256=reader.hexdigest(),
        size_bytes=reader.bytes_read,
    )


def read_stored_blocks(
    storage: 'FileStorage',
    storage_path: str,
    block_size: int = _READ_BLOCK_SIZE,
) -> Iterator[bytes]:
    """Stream a stored object in blocks.

    Args:
        storage: Storage backend.
        storage_path: Key of object to read.
        block_size: Maximum block length.

    Yields:
        Byte blocks in object order.

    Raises:
        StorageReadError: If the object is missing or unreadable.
    """
    try:
        stored = storage.open(storage_path, 'rb')
    except Exception as error:
        logger.warning('Cannot open stored object: %s', storage_path)
        raise StorageReadError(
            f'Cannot read stored object: {storage_path}',
        ) from error

    with stored:
        try:
            yield from stored.chunks(block_size)
        except Exception as error:
            logger.exception('Failed reading stored object: %s', storage_path)
            raise StorageReadError(
                f'Cannot read stored object: {storage_path}',
            ) from error


def _validate_declared_size(
    stream: BinaryIO | DjangoFile,
    config: FileHostingConfig,
) -> None:
    declared_size = getattr(stream, 'size', None)
    if declared_size is None:
        return
    if declared_size == 0:
        raise InvalidArgumentError('Empty files are not accepted')
    if declared_size > config.max_file_size:
        raise InvalidArgumentError(
            f'File exceeds maximum size of {config.max_file_size} bytes',
        )


@rate_limited(UPLOADS_SCOPE)
def store_file(  # noqa: WPS211
    stream: BinaryIO | DjangoFile,
    original_name: str,
    mime_type: str | None = None,
    ttl: timedelta | None = None,
    *,
    permanent: bool = False,
    config: FileHostingConfig | None = None,
) -> File:
    """Store a complete file in one shot and create its record.

    Transaction safety: stream to storage first, then create the DB
    record. If anything fails after the write started, the object is
    deleted from storage (rollback), so no orphaned bytes remain.

    Zero-byte files are rejected.

    Args:
        stream: File-like object positioned at the start of content.
        original_name: Filename supplied by the uploader, stored sanitized.
        mime_type: MIME type, guessed from the filename when omitted.
        ttl: Lifetime, the configured default when omitted.
        permanent: Store without expiry (if allowed).
        config: File hosting configuration.

    Returns:
        Created File instance.

    Raises:
        InvalidArgumentError: For empty, oversized or badly named files.
        StorageWriteError: If the storage write fails.
        MetadataError: If the DB record cannot be created.
    """
    config = get_config(config)
    original_name = validate_filename(original_name, config)
    _validate_declared_size(stream, config)
    expires_at = resolve_expiry(ttl, permanent=permanent, config=config)

    file_id = generate_file_id()
    storage_path = build_storage_path(file_id, original_name)
    storage = _get_storage()

    logger.info('Storing file %s as %s', original_name, storage_path)
    stored = write_content(storage, storage_path, stream)

    if stored.size_bytes == 0 or stored.size_bytes > config.max_file_size:
        storage.rollback_upload(stored.storage_path)
        raise InvalidArgumentError(
            f'File size {stored.size_bytes} is outside accepted range '
            f'1..{config.max_file_size}',
        )

    return create_file_record(
        storage,
        stored,
        file_id=file_id,
        original_name=original_name,
        mime_type=mime_type or detect_mime_type(original_name),
        expires_at=expires_at,
        config=config,
    )


def create_file_record(  # noqa: WPS211
    storage: 'FileStorage',
    stored: StoredContent,
    *,
    file_id: str,
    original_name: str,
    mime_type: str,
    expires_at: datetime | None,
    config: FileHostingConfig,
) -> File:
    """Commit the record for content already written to storage.

    Must run inside the caller's transaction when other rows change
    together with the new record. On failure the stored object is
    removed (rollback).

    Returns:
        Created File instance.

    Raises:
        MetadataError: If the DB record cannot be created.
    """
    try:
        with transaction.atomic():
            file_instance = File.objects.create(
                file_id=file_id,
                original_name=original_name,
                file=stored.storage_path,
                size_bytes=stored.size_bytes,
                mime_type=mime_type,
                checksum_sha256=stored.checksum_sha256,
                delete_token=generate_delete_token(config),
                expires_at=expires_at,
            )
    except DatabaseError as error:
        logger.exception(
            'Database transaction failed, rolling back storage upload: %s',
            stored.storage_path,
        )
        storage.rollback_upload(stored.storage_path)
        raise MetadataError('Failed to create file record') from error

    logger.info(
        'File record created: %s (ID: %s, %d bytes)',
        stored.storage_path,
        file_id[:12],
        stored.size_bytes,
    )
    return file_instance


def get_file(file_id: str) -> File:
    """Get a live file by its public id.

    Expiry is checked against the current time, so a file is not
    served in the window between its expiry and the next sweep.

    Args:
        file_id: Public file id.

    Returns:
        File instance.

    Raises:
        NotFoundError: If the file does not exist or has expired.
    """
    try:
        file_instance = File.objects.get(file_id=file_id)
    except File.DoesNotExist as error:
        raise NotFoundError(f'File not found: {file_id}') from error

    if file_instance.is_expired():
        logger.debug('File requested after expiry: %s', file_id[:12])
        raise NotFoundError(f'File not found: {file_id}')

    return file_instance


@rate_limited(DOWNLOADS_SCOPE)
def open_file(file_id: str) -> tuple[File, DjangoFile]:
    """Open a live file's bytes for download.

    The caller must close the returned file object.

    Args:
        file_id: Public file id.

    Returns:
        Tuple of (File record, open binary file object).

    Raises:
        NotFoundError: If the file does not exist or has expired.
        StorageReadError: If the stored object cannot be opened.
    """
    file_instance = get_file(file_id)
    try:
        content = _get_storage().open(file_instance.storage_path, 'rb')
    except Exception as error:
        logger.exception(
            'Stored object missing for file %s: %s',
            file_id[:12],
            file_instance.storage_path,
        )
        raise StorageReadError(
            f'Cannot read file content: {file_id}',
        ) from error
    return file_instance, content


def remove_file(file_instance: File, storage: 'FileStorage') -> None:
    """Delete a file's storage object, then its record.

    Storage-first ordering: if the record deletion fails, a later call
    finds the object already gone, which is not an error.

    Args:
        file_instance: File to remove.
        storage: Storage backend.

    Raises:
        StorageWriteError: If the storage delete fails.
        MetadataError: If the DB delete fails.
    """
    try:
        storage.delete(file_instance.storage_path)
    except Exception as error:
        raise StorageWriteError(
            f'Failed to delete object: {file_instance.storage_path}',
        ) from error

    try:
        file_instance.delete()
    except DatabaseError as error:
        raise MetadataError(
            f'Failed to delete file record: {file_instance.file_id}',
        ) from error


def delete_file(
    file_id: str,
    delete_token: str,
    config: FileHostingConfig | None = None,
) -> None:
    """Delete a file on behalf of its uploader.

    Args:
        file_id: Public file id.
        delete_token: Token issued when the file was stored.
        config: File hosting configuration.

    Raises:
        NotFoundError: If the file does not exist or has expired.
        InvalidArgumentError: If owner deletion is disabled or the
            token does not match.
    """
    config = get_config(config)
    if not config.allow_owner_delete:
        raise InvalidArgumentError('Owner deletion is disabled')

    file_instance = get_file(file_id)
    if not file_instance.delete_token or not secrets.compare_digest(
        file_instance.delete_token,
        delete_token,
    ):
        logger.warning('Rejected delete with bad token: %s', file_id[:12])
        raise InvalidArgumentError('Invalid delete token')

    remove_file(file_instance, _get_storage())
    logger.info('File deleted by owner: %s', file_id[:12])


def verify_file_integrity(file_id: str) -> bool:
    """Recompute a file's checksum from storage and compare.

    Args:
        file_id: Public file id.

    Returns:
        True if size and checksum match the record.

    Raises:
        NotFoundError: If the file does not exist or has expired.
        StorageReadError: If the stored object cannot be read.
    """
    file_instance = get_file(file_id)
    checksum, size_bytes = calculate_stream_checksum(
        read_stored_blocks(_get_storage(), file_instance.storage_path),
    )
    matches = (
        checksum == file_instance.checksum_sha256
        and size_bytes == file_instance.size_bytes
    )
    if not matches:
        logger.warning(
            'Integrity check failed for %s: expected %s (%d bytes), '
            'got %s (%d bytes)',
            file_id[:12],
            file_instance.checksum_sha256,
            file_instance.size_bytes,
            checksum,
            size_bytes,
        )
    return matches


def find_duplicates(file_id: str) -> list[File]:
    """Find other live files with identical content.

    Args:
        file_id: Public file id.

    Returns:
        Live files with the same checksum and size, newest first.

    Raises:
        NotFoundError: If the file does not exist or has expired.
    """
    file_instance = get_file(file_id)
    return list(
        File.objects.live()
        .filter(
            checksum_sha256=file_instance.checksum_sha256,
            size_bytes=file_instance.size_bytes,
        )
        .exclude(file_id=file_id),
    )


def get_duplicate_stats() -> DuplicateStats:
    """Summarize live files that share identical content.

    Returns:
        DuplicateStats with group count, redundant copies and the bytes
        they occupy.
    """
    groups = (
        File.objects.live()
        .values('checksum_sha256', 'size_bytes')
        .annotate(copies=Count('id'))
        .filter(copies__gt=1)
    )
    duplicate_groups = 0
    duplicate_files = 0
    reclaimable_bytes = 0
    for group in groups:
        duplicate_groups += 1
        duplicate_files += group['copies'] - 1
        reclaimable_bytes += (group['copies'] - 1) * group['size_bytes']

    return DuplicateStats(
        duplicate_groups=duplicate_groups,
        duplicate_files=duplicate_files,
        reclaimable_bytes=reclaimable_bytes,
    )
