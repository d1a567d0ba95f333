"""Custom storage backend for S3-compatible storage."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, final, override

from storages.backends.s3 import S3Storage
from storages.utils import clean_name

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True, slots=True)
class StoredObject:
    """Listing entry for an object in the bucket."""

    name: str
    size_bytes: int
    last_modified: datetime


@final
class FileStorage(S3Storage):
    """S3 storage backend for hosted files and upload chunks.

    Extends django-storages S3Storage with:
    - Rollback of uploads whose metadata commit failed
    - Prefix listing and prefix deletion for chunk sets and orphan scans
    - Enhanced error logging

    Deletes are idempotent: removing a missing key is not an error.
    """

    @override
    def save(  # noqa: WPS211
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save object to S3 with error handling and logging.

        Args:
            name: Storage key.
            content: File content (file-like object, may be a stream).
            max_length: Optional maximum length for the key.

        Returns:
            Storage key used.

        Raises:
            Exception: If S3 upload fails.
        """
        try:
            logger.debug('Uploading object to storage: %s', name)
            saved_name = super().save(name, content, max_length)
            logger.debug('Successfully uploaded object: %s', saved_name)
        except Exception:
            logger.exception('Failed to upload object to storage: %s', name)
            raise
        else:
            return saved_name

    @override
    def delete(self, name: str) -> None:
        """Delete object from S3 with error handling and logging.

        Args:
            name: Storage key of object to delete.

        Raises:
            Exception: If S3 delete fails.
        """
        try:
            logger.debug('Deleting object from storage: %s', name)
            super().delete(name)
        except Exception:
            logger.exception('Failed to delete object from storage: %s', name)
            raise

    def rollback_upload(self, name: str) -> None:
        """Delete an uploaded object after a failed commit.

        This is a best-effort operation - if deletion fails, the error
        is logged but not raised. The leftover object has no metadata
        row and is removed later by storage maintenance.

        Args:
            name: Storage key of object to delete.
        """
        try:
            logger.warning('Rolling back upload, deleting object: %s', name)
            self.delete(name)
        except Exception:
            logger.exception(
                'Failed to rollback upload, orphaned object: %s',
                name,
            )

    def iter_objects(self, prefix: str) -> Iterator[StoredObject]:
        """List every object under a key prefix.

        Args:
            prefix: Key prefix (e.g. 'chunks/').

        Yields:
            StoredObject for each key, in key order.
        """
        for summary in self.bucket.objects.filter(Prefix=self._key(prefix)):
            yield StoredObject(
                name=self._name_from_key(summary.key),
                size_bytes=summary.size,
                last_modified=summary.last_modified,
            )

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under a key prefix.

        Args:
            prefix: Key prefix, should end with '/'.

        Returns:
            Number of objects deleted.

        Raises:
            Exception: If S3 batch delete fails.
        """
        key_prefix = self._key(prefix)
        try:
            responses = self.bucket.objects.filter(Prefix=key_prefix).delete()
        except Exception:
            logger.exception('Failed to delete prefix: %s', prefix)
            raise

        deleted = sum(
            len(response.get('Deleted', []))
            for response in responses
        )
        logger.debug('Deleted %d objects under prefix: %s', deleted, prefix)
        return deleted

    def _key(self, name: str) -> str:
        return self._normalize_name(clean_name(name))

    def _name_from_key(self, key: str) -> str:
        location = self.location.strip('/')
        if location and key.startswith(f'{location}/'):
            return key[len(location) + 1:]
        return key
