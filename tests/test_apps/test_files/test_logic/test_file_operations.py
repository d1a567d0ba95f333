"""Tests for file operations business logic."""

import dataclasses
import hashlib
from datetime import timedelta
from io import BytesIO

import pytest
from django.core.files.base import ContentFile
from django.db import DatabaseError
from django.utils import timezone

from server.apps.files.exceptions import (
    InvalidArgumentError,
    MetadataError,
    NotFoundError,
    RateLimitExceededError,
    StorageWriteError,
)
from server.apps.files.logic import file_operations
from server.apps.files.logic.file_operations import (
    delete_file,
    find_duplicates,
    get_duplicate_stats,
    get_file,
    open_file,
    resolve_expiry,
    store_file,
    verify_file_integrity,
)
from server.apps.files.models import File


def _stored_keys(bucket) -> list[str]:
    return [obj.key for obj in bucket.objects.all()]


@pytest.mark.django_db
class TestStoreFile:
    """Tests for single-shot uploads."""

    def test_store_file_success(self, mock_s3, bucket, hosting_config):
        """Test successful file upload (S3 + DB)."""
        content = b'hello world'

        file_instance = store_file(
            BytesIO(content),
            'greeting.txt',
            config=hosting_config,
        )

        assert len(file_instance.file_id) == 64
        assert file_instance.original_name == 'greeting.txt'
        assert file_instance.size_bytes == len(content)
        assert file_instance.mime_type == 'text/plain'
        assert file_instance.checksum_sha256 == hashlib.sha256(content).hexdigest()
        assert len(file_instance.delete_token) == 64
        assert file_instance.storage_path == (
            f'files/{file_instance.file_id[:2]}/{file_instance.file_id[2:4]}/'
            f'{file_instance.file_id}.txt'
        )
        stored = bucket.Object(file_instance.storage_path).get()['Body'].read()
        assert stored == content

    def test_store_file_default_ttl(self, mock_s3, hosting_config):
        """Files expire after the default lifetime."""
        before = timezone.now()

        file_instance = store_file(
            ContentFile(b'data', name='a.bin'),
            'a.bin',
            config=hosting_config,
        )

        assert file_instance.expires_at >= before + timedelta(hours=24)
        assert file_instance.expires_at <= timezone.now() + timedelta(hours=24)

    def test_store_file_explicit_mime_type(self, mock_s3, hosting_config):
        """Caller supplied MIME type wins over detection."""
        file_instance = store_file(
            BytesIO(b'{}'),
            'data.txt',
            'application/json',
            config=hosting_config,
        )

        assert file_instance.mime_type == 'application/json'

    def test_store_file_rejects_empty(self, mock_s3, bucket, hosting_config):
        """Zero-byte files are rejected and leave nothing behind."""
        with pytest.raises(InvalidArgumentError):
            store_file(BytesIO(b''), 'empty.txt', config=hosting_config)

        assert File.objects.count() == 0
        assert _stored_keys(bucket) == []

    def test_store_file_rejects_declared_oversize(
        self,
        mock_s3,
        bucket,
        hosting_config,
    ):
        """Files declaring a size over the limit are rejected up front."""
        oversized = ContentFile(b'x' * (hosting_config.max_file_size + 1))

        with pytest.raises(InvalidArgumentError, match='maximum size'):
            store_file(oversized, 'big.bin', config=hosting_config)

        assert _stored_keys(bucket) == []

    def test_store_file_rejects_streamed_oversize(
        self,
        mock_s3,
        bucket,
        hosting_config,
    ):
        """Streams without a size are checked after streaming."""
        stream = BytesIO(b'x' * (hosting_config.max_file_size + 1))

        with pytest.raises(InvalidArgumentError):
            store_file(stream, 'big.bin', config=hosting_config)

        assert File.objects.count() == 0
        assert _stored_keys(bucket) == []

    def test_store_file_rejects_blank_name(self, mock_s3, hosting_config):
        """A filename is required."""
        with pytest.raises(InvalidArgumentError):
            store_file(BytesIO(b'data'), '  ', config=hosting_config)

    def test_store_file_rejects_blocked_extension(
        self,
        mock_s3,
        bucket,
        hosting_config,
    ):
        """Executable uploads are refused before anything is written."""
        with pytest.raises(InvalidArgumentError, match='not allowed'):
            store_file(BytesIO(b'MZ'), 'setup.exe', config=hosting_config)

        assert File.objects.count() == 0
        assert _stored_keys(bucket) == []

    def test_store_file_sanitizes_name(self, mock_s3, hosting_config):
        """Paths are dropped and long names shortened to fit the record."""
        file_instance = store_file(
            BytesIO(b'data'),
            f'uploads/{"n" * 300}.txt',
            config=hosting_config,
        )

        assert len(file_instance.original_name) == 255
        assert file_instance.original_name.endswith('n.txt')
        assert file_instance.storage_path.endswith('.txt')

    def test_store_file_permanent_not_allowed(self, mock_s3, hosting_config):
        """Permanent files need explicit configuration."""
        with pytest.raises(InvalidArgumentError, match='Permanent'):
            store_file(
                BytesIO(b'data'),
                'a.txt',
                permanent=True,
                config=hosting_config,
            )

    def test_store_file_permanent_allowed(self, mock_s3, hosting_config):
        """Permanent files have no expiry."""
        config = dataclasses.replace(hosting_config, allow_permanent_files=True)

        file_instance = store_file(
            BytesIO(b'data'),
            'a.txt',
            permanent=True,
            config=config,
        )

        assert file_instance.expires_at is None

    def test_store_file_storage_failure(
        self,
        mock_s3,
        hosting_config,
        monkeypatch,
    ):
        """Backend failures surface as StorageWriteError."""
        storage = file_operations._get_storage()

        def failing_save(name, content, max_length=None):
            raise ConnectionError('storage down')

        monkeypatch.setattr(storage, 'save', failing_save)

        with pytest.raises(StorageWriteError):
            store_file(BytesIO(b'data'), 'a.txt', config=hosting_config)

        assert File.objects.count() == 0

    def test_store_file_metadata_failure_rolls_back(
        self,
        mock_s3,
        bucket,
        hosting_config,
        monkeypatch,
    ):
        """Test upload with DB failure triggers S3 rollback."""
        def failing_create(**kwargs):
            raise DatabaseError('database unavailable')

        monkeypatch.setattr(File.objects, 'create', failing_create)

        with pytest.raises(MetadataError):
            store_file(BytesIO(b'data'), 'a.txt', config=hosting_config)

        assert _stored_keys(bucket) == []

    def test_store_file_rate_limited(self, mock_s3, hosting_config):
        """Uploads over the per-client limit are rejected."""
        for _ in range(hosting_config.rate_limit_uploads):
            store_file(
                BytesIO(b'data'),
                'a.txt',
                config=hosting_config,
                client_key='203.0.113.7',
            )

        with pytest.raises(RateLimitExceededError):
            store_file(
                BytesIO(b'data'),
                'a.txt',
                config=hosting_config,
                client_key='203.0.113.7',
            )


class TestResolveExpiry:
    """Tests for file lifetime policy."""

    def test_default(self, hosting_config):
        """No lifetime means the configured default."""
        expires_at = resolve_expiry(None, config=hosting_config)

        remaining = expires_at - timezone.now()
        assert timedelta(hours=23) < remaining <= timedelta(hours=24)

    def test_over_maximum(self, hosting_config):
        """Lifetimes above the maximum are rejected."""
        with pytest.raises(InvalidArgumentError):
            resolve_expiry(timedelta(days=31), config=hosting_config)

    def test_non_positive(self, hosting_config):
        """Zero and negative lifetimes are rejected."""
        with pytest.raises(InvalidArgumentError):
            resolve_expiry(timedelta(0), config=hosting_config)


@pytest.mark.django_db
class TestGetFile:
    """Tests for file lookup."""

    def test_get_file_live(self, make_file_record):
        """Live files are returned."""
        file_instance = make_file_record()

        assert get_file(file_instance.file_id) == file_instance

    def test_get_file_unknown(self, db):
        """Unknown ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            get_file('0' * 64)

    def test_get_file_expired_before_sweep(self, make_file_record):
        """Expired files are not served even while the row exists."""
        file_instance = make_file_record(
            expires_at=timezone.now() - timedelta(seconds=1),
        )

        with pytest.raises(NotFoundError):
            get_file(file_instance.file_id)

        # Removal is left to the sweeper
        assert File.objects.filter(pk=file_instance.pk).exists()

    def test_get_file_permanent(self, make_file_record):
        """Files without expiry are always returned."""
        file_instance = make_file_record(expires_at=None)

        assert get_file(file_instance.file_id) == file_instance


@pytest.mark.django_db
class TestOpenAndVerify:
    """Tests for reading stored bytes."""

    def test_open_file_returns_content(self, mock_s3, hosting_config):
        """open_file streams the stored bytes."""
        stored = store_file(BytesIO(b'payload'), 'a.txt', config=hosting_config)

        file_instance, content = open_file(stored.file_id)
        with content:
            assert content.read() == b'payload'
        assert file_instance == stored

    def test_open_file_download_rate_limit(
        self,
        mock_s3,
        hosting_config,
        settings,
    ):
        """Downloads over the per-client limit are rejected."""
        settings.FILEHOSTING_RATE_LIMIT_DOWNLOADS = 1
        stored = store_file(BytesIO(b'payload'), 'a.txt', config=hosting_config)

        _, content = open_file(stored.file_id, client_key='198.51.100.1')
        content.close()
        with pytest.raises(RateLimitExceededError):
            open_file(stored.file_id, client_key='198.51.100.1')

    def test_verify_file_integrity(self, mock_s3, bucket, hosting_config):
        """Integrity check detects modified bytes."""
        stored = store_file(BytesIO(b'payload'), 'a.txt', config=hosting_config)

        assert verify_file_integrity(stored.file_id)

        bucket.put_object(Key=stored.storage_path, Body=b'tampered')
        assert not verify_file_integrity(stored.file_id)


@pytest.mark.django_db
class TestDeleteFile:
    """Tests for owner deletion."""

    def test_delete_with_token(self, mock_s3, bucket, hosting_config):
        """Owner deletes file with the issued token."""
        stored = store_file(BytesIO(b'payload'), 'a.txt', config=hosting_config)

        delete_file(stored.file_id, stored.delete_token, config=hosting_config)

        assert not File.objects.filter(pk=stored.pk).exists()
        assert _stored_keys(bucket) == []

    def test_delete_with_wrong_token(self, mock_s3, hosting_config):
        """Wrong token is rejected and the file kept."""
        stored = store_file(BytesIO(b'payload'), 'a.txt', config=hosting_config)

        with pytest.raises(InvalidArgumentError):
            delete_file(stored.file_id, 'f' * 64, config=hosting_config)

        assert File.objects.filter(pk=stored.pk).exists()

    def test_delete_disabled(self, mock_s3, hosting_config):
        """Owner deletion can be switched off."""
        stored = store_file(BytesIO(b'payload'), 'a.txt', config=hosting_config)
        config = dataclasses.replace(hosting_config, allow_owner_delete=False)

        with pytest.raises(InvalidArgumentError):
            delete_file(stored.file_id, stored.delete_token, config=config)

    def test_delete_when_object_already_gone(
        self,
        mock_s3,
        bucket,
        hosting_config,
    ):
        """A missing object does not block removing the record."""
        stored = store_file(BytesIO(b'payload'), 'a.txt', config=hosting_config)
        bucket.Object(stored.storage_path).delete()

        delete_file(stored.file_id, stored.delete_token, config=hosting_config)

        assert not File.objects.filter(pk=stored.pk).exists()


@pytest.mark.django_db
class TestDuplicates:
    """Tests for duplicate content reporting."""

    def test_find_duplicates(self, mock_s3, hosting_config):
        """Files with identical content are found."""
        first = store_file(BytesIO(b'same'), 'a.txt', config=hosting_config)
        second = store_file(BytesIO(b'same'), 'b.txt', config=hosting_config)
        store_file(BytesIO(b'different'), 'c.txt', config=hosting_config)

        assert find_duplicates(first.file_id) == [second]

    def test_duplicate_stats(self, mock_s3, hosting_config):
        """Stats count redundant copies and their bytes."""
        for name in ('a.txt', 'b.txt', 'c.txt'):
            store_file(BytesIO(b'same'), name, config=hosting_config)
        store_file(BytesIO(b'unique'), 'd.txt', config=hosting_config)

        stats = get_duplicate_stats()

        assert stats.duplicate_groups == 1
        assert stats.duplicate_files == 2
        assert stats.reclaimable_bytes == 8
