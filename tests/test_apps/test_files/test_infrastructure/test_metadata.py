"""Tests for metadata utilities."""

import hashlib
import io

from server.apps.files.infrastructure.metadata import (
    ChecksumReader,
    IterableReader,
    build_chunk_path,
    build_chunk_prefix,
    build_storage_path,
    calculate_stream_checksum,
    detect_mime_type,
    get_file_extension,
)


def test_detect_mime_type():
    """Test MIME type detection from filename."""
    assert detect_mime_type('test.pdf') == 'application/pdf'
    assert detect_mime_type('test.txt') == 'text/plain'
    assert detect_mime_type('test.jpg') == 'image/jpeg'
    assert detect_mime_type('test.png') == 'image/png'


def test_detect_mime_type_unknown():
    """Test MIME type detection for unknown extension."""
    assert detect_mime_type('test.unknown') == 'application/octet-stream'


def test_calculate_stream_checksum():
    """Checksum of blocks equals checksum of their concatenation."""
    checksum, total = calculate_stream_checksum([b'ab', b'', b'cde'])

    assert checksum == hashlib.sha256(b'abcde').hexdigest()
    assert total == 5


def test_checksum_reader_hashes_passing_bytes():
    """ChecksumReader hashes and counts what it passes through."""
    data = b'x' * 20000
    reader = ChecksumReader(io.BytesIO(data))

    assert reader.read() == data
    assert reader.bytes_read == len(data)
    assert reader.hexdigest() == hashlib.sha256(data).hexdigest()
    assert not reader.seekable()


def test_checksum_reader_empty_source():
    """Empty source gives the empty-string digest."""
    reader = ChecksumReader(io.BytesIO(b''))

    assert reader.read() == b''
    assert reader.bytes_read == 0
    assert reader.hexdigest() == hashlib.sha256(b'').hexdigest()


def test_iterable_reader_concatenates_blocks():
    """IterableReader returns blocks as one stream, in order."""
    reader = IterableReader(iter([b'hello ', b'', b'chunked', b' world']))

    assert reader.read(4) == b'hell'
    assert reader.read() == b'o chunked world'
    assert reader.read() == b''


def test_build_storage_path():
    """Storage keys are sharded by the first id characters."""
    file_id = 'abcdef' + '0' * 58

    assert build_storage_path(file_id, 'Report.PDF') == (
        f'files/ab/cd/{file_id}.pdf'
    )


def test_build_storage_path_drops_unsafe_extension():
    """Extensions that are not plain alphanumerics are left out."""
    file_id = 'abcdef' + '0' * 58

    assert build_storage_path(file_id, 'archive.tar-gz!') == (
        f'files/ab/cd/{file_id}'
    )
    assert build_storage_path(file_id, 'noextension') == (
        f'files/ab/cd/{file_id}'
    )


def test_build_chunk_path_sorts_by_index():
    """Chunk keys are zero-padded so key order equals index order."""
    assert build_chunk_prefix('s1') == 'chunks/s1/'
    assert build_chunk_path('s1', 3) == 'chunks/s1/00000003'
    assert build_chunk_path('s1', 2) < build_chunk_path('s1', 10)


def test_get_file_extension():
    """Test extension extraction."""
    assert get_file_extension('a/b/photo.JPEG') == 'jpeg'
    assert get_file_extension('README') == ''
