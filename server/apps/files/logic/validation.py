"""Filename checks applied to every upload.

Rejects names that try to escape their directory, carry a blocked
extension or hide one behind a harmless looking double extension, and
returns a sanitized name that is safe to store and display.
"""

import logging
import re
from typing import Final
from urllib.parse import unquote

from server.apps.files.conf import FileHostingConfig
from server.apps.files.exceptions import InvalidArgumentError
from server.apps.files.infrastructure.metadata import get_file_extension

logger = logging.getLogger(__name__)

# Inner extensions that make 'name.<inner>.<outer>' suspicious
_DECOY_EXTENSIONS: Final = frozenset((
    'txt',
    'doc',
    'pdf',
    'jpg',
    'png',
    'gif',
    'mp3',
    'mp4',
    'zip',
    'rar',
))

_PATH_TRAVERSAL: Final = re.compile(r'\.\.[/\\]')
_UNSAFE_CHARACTERS: Final = re.compile(r'[<>:"|?*\x00-\x1f]')
_FALLBACK_NAME: Final = 'unnamed_file'


def sanitize_filename(filename: str, max_length: int) -> str:
    """Make a client supplied filename safe to store.

    Drops any directory part, replaces characters that are unsafe on
    common filesystems, strips leading and trailing dots and spaces and
    shortens the name to ``max_length`` keeping its extension.

    Args:
        filename: Filename as sent by the client.
        max_length: Longest allowed result.

    Returns:
        Sanitized filename, never empty.
    """
    name = filename.replace('\\', '/').rsplit('/', 1)[-1]
    name = _UNSAFE_CHARACTERS.sub('_', name).strip('. ')
    if not name:
        return _FALLBACK_NAME
    if len(name) <= max_length:
        return name

    stem, dot, extension = name.rpartition('.')
    if dot and stem and len(extension) < max_length - 1:
        return f'{stem[:max_length - len(extension) - 1]}.{extension}'
    return name[:max_length]


def has_double_extension(filename: str) -> bool:
    """Check for names like 'invoice.pdf.exe'."""
    parts = filename.split('.')
    if len(parts) < 3:
        return False
    return parts[-2].lower() in _DECOY_EXTENSIONS


def validate_filename(original_name: str, config: FileHostingConfig) -> str:
    """Validate an uploaded file's name and return it sanitized.

    Args:
        original_name: Filename as sent by the client.
        config: File hosting configuration.

    Returns:
        Sanitized filename to store.

    Raises:
        InvalidArgumentError: If the name is blank, contains null bytes
            or path traversal, or has a blocked or double extension.
    """
    if not original_name or not original_name.strip():
        raise InvalidArgumentError('Original filename is required')
    if '\x00' in original_name:
        raise InvalidArgumentError('Filename contains null bytes')
    if _PATH_TRAVERSAL.search(unquote(original_name)):
        logger.warning('Rejected filename with path traversal: %r', original_name)
        raise InvalidArgumentError('Filename contains path traversal')

    filename = sanitize_filename(original_name, config.max_filename_length)
    extension = get_file_extension(filename)
    if extension in config.blocked_extensions:
        raise InvalidArgumentError(
            f'File type not allowed for security reasons: .{extension}',
        )
    if has_double_extension(filename):
        raise InvalidArgumentError('Filename contains suspicious double extension')
    return filename
