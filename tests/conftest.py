"""Shared fixtures for all tests."""

import copy
from datetime import timedelta
from typing import Final

import boto3
import pytest
from django.core.cache import cache
from django.utils import timezone
from moto import mock_aws

from server.apps.files.conf import FileHostingConfig
from server.apps.uploads.models import UploadSession

_TEST_BUCKET: Final = 'file-hosting-test'
_FILE_CACHE_BACKEND: Final = 'django.core.cache.backends.filebased.FileBasedCache'


@pytest.fixture(autouse=True)
def _clear_cache(settings, tmp_path):
    """Give every test its own empty cache for job flags and counters.

    The default cache is shared between processes, so a running
    development server would otherwise see the test flags.
    """
    settings.CACHES = {
        'default': {
            'BACKEND': _FILE_CACHE_BACKEND,
            'LOCATION': str(tmp_path / 'cache'),
        },
    }
    yield
    cache.clear()


@pytest.fixture
def mock_s3(settings):
    """Mock S3 service and point the default storage at it.

    Yields:
        boto3 S3 resource with the test bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=_TEST_BUCKET)

        # Changing STORAGES resets default_storage to a fresh backend
        storages = copy.deepcopy(settings.STORAGES)
        storages['default']['OPTIONS'].update(
            bucket_name=_TEST_BUCKET,
            access_key='testing',
            secret_key='testing',
            endpoint_url=None,
            region_name='us-east-1',
            location='',
        )
        settings.STORAGES = storages

        yield conn


@pytest.fixture
def bucket(mock_s3):
    """Test bucket resource.

    Returns:
        boto3 Bucket for direct assertions on stored keys.
    """
    return mock_s3.Bucket(_TEST_BUCKET)


@pytest.fixture
def hosting_config():
    """Small limits that keep tests fast and explicit.

    Returns:
        FileHostingConfig instance.
    """
    return FileHostingConfig(
        max_file_size=10 * 1024,
        chunked_upload_threshold=4 * 1024,
        default_file_ttl=timedelta(hours=24),
        max_file_ttl=timedelta(days=30),
        upload_session_ttl=timedelta(hours=48),
        assembly_lease=timedelta(minutes=10),
        orphan_grace=timedelta(0),
        sweep_batch_size=100,
        rate_limit_uploads=3,
        rate_limit_downloads=5,
        rate_limit_window=timedelta(seconds=60),
    )


@pytest.fixture
def make_session(db):
    """Factory for upload sessions without stored chunks.

    Returns:
        Callable creating an UploadSession (10 bytes in chunks of 4).
    """
    counter = iter(range(1, 10_000))

    def factory(**overrides) -> UploadSession:
        defaults = {
            'session_id': f'{next(counter):032x}',
            'original_name': 'big.bin',
            'mime_type': 'application/octet-stream',
            'total_size': 10,
            'chunk_size': 4,
            'expires_at': timezone.now() + timedelta(hours=1),
        }
        defaults.update(overrides)
        return UploadSession.objects.create(**defaults)

    return factory
