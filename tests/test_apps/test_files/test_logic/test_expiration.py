"""Tests for the expiration sweeper."""

from datetime import timedelta
from io import BytesIO

import pytest
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.utils import timezone
from storages.backends.s3 import S3Storage

from server.apps.files.logic.expiration import (
    run_sweep,
    sweep_expired_files,
    sweep_expired_sessions,
)
from server.apps.files.logic.file_operations import store_file
from server.apps.files.models import File
from server.apps.uploads.models import UploadSession


def _expire(file_instance: File, ago: timedelta = timedelta(minutes=1)) -> None:
    File.objects.filter(pk=file_instance.pk).update(
        expires_at=timezone.now() - ago,
    )


@pytest.mark.django_db
class TestSweepExpiredFiles:
    """Tests for file expiry sweeping."""

    def test_deletes_expired_keeps_live(self, mock_s3, bucket, hosting_config):
        """Only files past expiry are removed, bytes first."""
        expired = store_file(BytesIO(b'old!'), 'old.txt', config=hosting_config)
        live = store_file(BytesIO(b'new'), 'new.txt', config=hosting_config)
        _expire(expired)

        result = sweep_expired_files(config=hosting_config)

        assert result.files_deleted == 1
        assert result.bytes_freed == 4
        assert result.failed == 0
        assert list(File.objects.all()) == [live]
        assert [obj.key for obj in bucket.objects.all()] == [live.storage_path]

    def test_permanent_files_never_selected(self, mock_s3, make_file_record):
        """Files without expiry survive any sweep."""
        make_file_record(expires_at=None)

        result = sweep_expired_files(now=timezone.now() + timedelta(days=3650))

        assert result.files_deleted == 0
        assert File.objects.count() == 1

    def test_missing_object_counts_as_deleted(
        self,
        mock_s3,
        make_file_record,
    ):
        """A row whose object is already gone is still removed."""
        make_file_record(expires_at=timezone.now() - timedelta(hours=1))

        result = sweep_expired_files()

        assert result.files_deleted == 1
        assert File.objects.count() == 0

    def test_rerun_is_noop(self, mock_s3, hosting_config):
        """A second pass finds nothing to do."""
        expired = store_file(BytesIO(b'old'), 'old.txt', config=hosting_config)
        _expire(expired)

        sweep_expired_files(config=hosting_config)
        result = sweep_expired_files(config=hosting_config)

        assert result.files_deleted == 0
        assert result.failed == 0

    def test_batch_size_oldest_first(self, mock_s3, make_file_record):
        """Batches take the oldest expiry first."""
        now = timezone.now()
        oldest = make_file_record(expires_at=now - timedelta(hours=3))
        make_file_record(expires_at=now - timedelta(hours=1))

        result = sweep_expired_files(batch_size=1)

        assert result.files_deleted == 1
        assert not File.objects.filter(pk=oldest.pk).exists()
        assert File.objects.count() == 1

    def test_dry_run_deletes_nothing(self, mock_s3, bucket, hosting_config):
        """Dry run reports candidates only."""
        expired = store_file(BytesIO(b'old'), 'old.txt', config=hosting_config)
        _expire(expired)

        result = sweep_expired_files(dry_run=True, config=hosting_config)

        assert result.files_deleted == 1
        assert result.dry_run
        assert File.objects.filter(pk=expired.pk).exists()
        assert len(list(bucket.objects.all())) == 1

    def test_storage_failure_keeps_row_and_continues(
        self,
        mock_s3,
        make_file_record,
        monkeypatch,
    ):
        """Per-file failures are counted and the row is kept for a retry."""
        make_file_record(expires_at=timezone.now() - timedelta(hours=2))
        make_file_record(expires_at=timezone.now() - timedelta(hours=1))

        def failing_delete(self, name):
            raise ConnectionError('storage down')

        monkeypatch.setattr(S3Storage, 'delete', failing_delete)

        result = sweep_expired_files()

        assert result.failed == 2
        assert result.files_deleted == 0
        assert File.objects.count() == 2


@pytest.mark.django_db
class TestSweepExpiredSessions:
    """Tests for upload session expiry sweeping."""

    def test_deletes_expired_session_and_chunks(
        self,
        mock_s3,
        bucket,
        make_session,
        hosting_config,
    ):
        """Expired sessions lose their chunks and rows."""
        expired = make_session(expires_at=timezone.now() - timedelta(minutes=1))
        live = make_session()
        default_storage.save(
            f'chunks/{expired.session_id}/00000000',
            ContentFile(b'abcd'),
        )
        default_storage.save(
            f'chunks/{live.session_id}/00000000',
            ContentFile(b'abcd'),
        )

        result = sweep_expired_sessions(config=hosting_config)

        assert result.sessions_deleted == 1
        assert list(UploadSession.objects.all()) == [live]
        assert [obj.key for obj in bucket.objects.all()] == [
            f'chunks/{live.session_id}/00000000',
        ]

    def test_skips_session_with_fresh_claim(self, mock_s3, make_session, hosting_config):
        """A session being assembled is left alone."""
        make_session(
            expires_at=timezone.now() - timedelta(minutes=1),
            assembly_started_at=timezone.now() - timedelta(minutes=1),
        )

        result = sweep_expired_sessions(config=hosting_config)

        assert result.sessions_deleted == 0
        assert UploadSession.objects.count() == 1

    def test_takes_session_with_stale_claim(self, mock_s3, make_session, hosting_config):
        """An abandoned claim does not protect an expired session."""
        make_session(
            expires_at=timezone.now() - timedelta(minutes=1),
            assembly_started_at=timezone.now() - timedelta(hours=2),
        )

        result = sweep_expired_sessions(config=hosting_config)

        assert result.sessions_deleted == 1
        assert UploadSession.objects.count() == 0


@pytest.mark.django_db
def test_run_sweep_combines_results(mock_s3, make_file_record, make_session):
    """run_sweep covers files and sessions in one pass."""
    make_file_record(expires_at=timezone.now() - timedelta(hours=1), size_bytes=7)
    make_session(expires_at=timezone.now() - timedelta(hours=1))

    result = run_sweep()

    assert result.files_deleted == 1
    assert result.sessions_deleted == 1
    assert result.bytes_freed == 7
    assert result.failed == 0
