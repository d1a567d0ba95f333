"""Tests for optimize_storage management command."""

from datetime import timedelta
from io import StringIO

import pytest
from django.core.cache import cache
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.core.management import call_command
from django.utils import timezone

from server.apps.files.logic.jobs import job_lock_key


@pytest.mark.django_db
class TestOptimizeStorageCommand:
    """Tests for optimize_storage management command."""

    def test_light_keeps_recent_orphans(self, mock_s3, bucket):
        """Default grace period protects just written objects."""
        default_storage.save('files/00/00/orphan.txt', ContentFile(b'orphan'))

        out = StringIO()
        call_command('optimize_storage', stdout=out)

        assert 'Removed 0 orphan files and 0 orphan chunk sets' in out.getvalue()
        assert 'Maintenance complete' in out.getvalue()
        assert len(list(bucket.objects.all())) == 1

    def test_light_removes_old_orphans(self, mock_s3, bucket, settings):
        """Orphans older than the grace period are removed."""
        settings.FILEHOSTING_ORPHAN_GRACE_HOURS = 0
        default_storage.save('files/00/00/orphan.txt', ContentFile(b'orphan'))

        out = StringIO()
        call_command('optimize_storage', stdout=out)

        assert 'Removed 1 orphan files' in out.getvalue()
        assert list(bucket.objects.all()) == []

    def test_skips_when_running(self, mock_s3):
        """An overlapping maintenance run is skipped."""
        cache.add(job_lock_key('optimize_storage'), 'other-run', timeout=60)

        out = StringIO()
        call_command('optimize_storage', '--aggressive', stdout=out)

        assert 'already running' in out.getvalue()


@pytest.mark.django_db(transaction=True)
def test_aggressive_releases_claims(mock_s3, make_session, settings):
    """Aggressive mode reports released claims and compaction."""
    settings.FILEHOSTING_ASSEMBLY_LEASE_SECONDS = 60
    make_session(assembly_started_at=timezone.now() - timedelta(hours=1))

    out = StringIO()
    call_command('optimize_storage', '--aggressive', stdout=out)

    assert 'Released 1 stale claims, database compacted: True' in out.getvalue()
