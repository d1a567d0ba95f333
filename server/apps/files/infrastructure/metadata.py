"""Checksum engine and metadata utilities for files."""

import hashlib
import io
import mimetypes
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import BinaryIO, Final, override

_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'
_MAX_EXTENSION_LENGTH: Final = 16


def detect_mime_type(filename: str) -> str:
    """Detect MIME type from filename.

    Uses Python's built-in mimetypes module to guess MIME type
    from filename extension.

    Args:
        filename: Filename with extension.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type is None:
        return _DEFAULT_MIME_TYPE
    return mime_type


def calculate_stream_checksum(blocks: Iterable[bytes]) -> tuple[str, int]:
    """Calculate SHA256 checksum and length of a byte stream.

    Args:
        blocks: Byte blocks in stream order.

    Returns:
        Tuple of (hex digest, total length in bytes).
    """
    sha256_hash = hashlib.sha256()
    total = 0
    for block in blocks:
        sha256_hash.update(block)
        total += len(block)
    return sha256_hash.hexdigest(), total


class ChecksumReader(io.RawIOBase):
    """Read-through wrapper hashing every byte that passes.

    Lets a stream be written to storage and checksummed in the same
    pass, without buffering the whole content. The wrapper is not
    seekable, so the storage backend streams it once.

    Example:
        reader = ChecksumReader(upload)
        storage.save(key, reader)
        reader.hexdigest(), reader.bytes_read
    """

    def __init__(self, source: BinaryIO | io.RawIOBase) -> None:
        """Initialize ChecksumReader.

        Args:
            source: Object with a ``read(size)`` method returning bytes.
        """
        super().__init__()
        self._source = source
        self._hash = hashlib.sha256()
        self.bytes_read = 0

    @override
    def readable(self) -> bool:
        return True

    @override
    def readinto(self, buffer: bytearray | memoryview) -> int:  # type: ignore[override]
        data = self._source.read(len(buffer))
        if not data:
            return 0
        count = len(data)
        buffer[:count] = data
        self._hash.update(data)
        self.bytes_read += count
        return count

    def hexdigest(self) -> str:
        """Hex-encoded SHA256 of the bytes read so far."""
        return self._hash.hexdigest()


class IterableReader(io.RawIOBase):
    """File-like view over an iterable of byte blocks.

    Used to hand a concatenation of stored chunks to the storage
    backend as one stream.
    """

    def __init__(self, blocks: Iterable[bytes]) -> None:
        """Initialize IterableReader.

        Args:
            blocks: Byte blocks in stream order.
        """
        super().__init__()
        self._blocks: Iterator[bytes] = iter(blocks)
        self._pending = b''

    @override
    def readable(self) -> bool:
        return True

    @override
    def readinto(self, buffer: bytearray | memoryview) -> int:  # type: ignore[override]
        if not self._pending:
            self._pending = self._next_block()
            if not self._pending:
                return 0
        count = min(len(buffer), len(self._pending))
        buffer[:count] = self._pending[:count]
        self._pending = self._pending[count:]
        return count

    def _next_block(self) -> bytes:
        # Skip empty blocks, an empty result means the stream is exhausted
        for block in self._blocks:
            if block:
                return block
        return b''


def build_storage_path(file_id: str, original_name: str) -> str:
    """Build the storage key for a hosted file.

    Keys are spread over two directory levels taken from the id.

    Example: ('abcdef...', 'report.PDF') -> 'files/ab/cd/abcdef....pdf'

    Args:
        file_id: Generated file id (hex).
        original_name: Uploaded filename, used for the extension only.

    Returns:
        Storage key.
    """
    extension = get_file_extension(original_name)
    if extension and len(extension) <= _MAX_EXTENSION_LENGTH and extension.isalnum():
        filename = f'{file_id}.{extension}'
    else:
        filename = file_id
    return f'files/{file_id[:2]}/{file_id[2:4]}/{filename}'


def build_chunk_path(session_id: str, index: int) -> str:
    """Build the storage key of one upload chunk.

    Indexes are zero-padded so key order equals index order.

    Args:
        session_id: Upload session id.
        index: Chunk index.

    Returns:
        Storage key, e.g. 'chunks/<session_id>/00000003'.
    """
    return f'{build_chunk_prefix(session_id)}{index:08d}'


def build_chunk_prefix(session_id: str) -> str:
    """Build the storage prefix holding a session's chunks.

    Args:
        session_id: Upload session id.

    Returns:
        Prefix ending with '/'.
    """
    return f'chunks/{session_id}/'


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'document.pdf').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if no extension.
    """
    extension = Path(filename).suffix
    return extension.lstrip('.').lower()
