"""Overlap protection for scheduled background jobs.

A job holds a flag in the Django cache while it runs. The flag is
created with ``cache.add``, which only succeeds when the key is
absent, and carries a timeout so a crashed run cannot block the job
forever.
"""

import logging
import secrets
from collections.abc import Callable
from typing import Any, TypeVar

from django.core.cache import cache

from server.apps.files.conf import FileHostingConfig, get_config

logger = logging.getLogger(__name__)

_Result = TypeVar('_Result')


def job_lock_key(name: str) -> str:
    """Cache key of a job's overlap flag."""
    return f'job-lock:{name}'


def run_job(
    name: str,
    func: Callable[..., _Result],
    *,
    config: FileHostingConfig | None = None,
    **kwargs: Any,
) -> _Result | None:
    """Run a job unless another run of it is still in progress.

    Args:
        name: Job name, one flag per name.
        func: Job callable, called with ``config`` and ``kwargs``.
        config: File hosting configuration.
        kwargs: Arguments for ``func``.

    Returns:
        Result of ``func``, or None if the run was skipped.
    """
    config = get_config(config)
    key = job_lock_key(name)
    token = secrets.token_hex(8)
    timeout = int(config.job_lock_timeout.total_seconds())

    if not cache.add(key, token, timeout=timeout):
        logger.warning('Job %s is already running, skipping this run', name)
        return None

    logger.info('Job %s started', name)
    try:
        result = func(config=config, **kwargs)
    except Exception:
        logger.exception('Job %s failed', name)
        raise
    finally:
        # Only clear our own flag, a timed out run may have been replaced
        if cache.get(key) == token:
            cache.delete(key)

    logger.info('Job %s finished', name)
    return result
