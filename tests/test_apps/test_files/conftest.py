"""Shared fixtures for files app tests."""

from datetime import timedelta

import pytest
from django.core.files.base import ContentFile
from django.utils import timezone

from server.apps.files.models import File


@pytest.fixture
def sample_file_content():
    """Sample file content for testing.

    Returns:
        ContentFile with test data.
    """
    return ContentFile(b'test file content', name='test.txt')


@pytest.fixture
def make_file_record(db):
    """Factory for File rows without stored bytes.

    Returns:
        Callable creating a File with sensible defaults.
    """
    counter = iter(range(1, 10_000))

    def factory(**overrides) -> File:
        number = next(counter)
        file_id = overrides.pop('file_id', f'{number:064x}')
        defaults = {
            'file_id': file_id,
            'original_name': f'file{number}.txt',
            'file': f'files/{file_id[:2]}/{file_id[2:4]}/{file_id}.txt',
            'size_bytes': 100,
            'mime_type': 'text/plain',
            'checksum_sha256': 'abcd' * 16,
            'expires_at': timezone.now() + timedelta(hours=1),
        }
        defaults.update(overrides)
        return File.objects.create(**defaults)

    return factory
