"""Per-client request rate limiting.

Fixed-window counters kept in the Django cache. Each client and scope
pair gets one counter per window; the first request of a window
creates it with the window length as timeout.
"""

import functools
import logging
import time
from collections.abc import Callable
from typing import Any, Final, ParamSpec, TypeVar

from django.core.cache import cache

from server.apps.files.conf import FileHostingConfig, get_config
from server.apps.files.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

UPLOADS_SCOPE: Final = 'uploads'
DOWNLOADS_SCOPE: Final = 'downloads'

_Params = ParamSpec('_Params')
_Result = TypeVar('_Result')


def get_scope_limit(scope: str, config: FileHostingConfig) -> int:
    """Allowed requests per window for a scope, 0 meaning unlimited.

    Raises:
        ValueError: For an unknown scope.
    """
    if scope == UPLOADS_SCOPE:
        return config.rate_limit_uploads
    if scope == DOWNLOADS_SCOPE:
        return config.rate_limit_downloads
    raise ValueError(f'Unknown rate limit scope: {scope}')


def check_rate_limit(
    client_key: str,
    scope: str,
    config: FileHostingConfig | None = None,
) -> int:
    """Count a request and reject it if the client is over its limit.

    Args:
        client_key: Identifies the client (e.g. hashed IP address).
        scope: Rate limit scope, ``uploads`` or ``downloads``.
        config: File hosting configuration.

    Returns:
        Requests counted in the current window, 0 if unlimited.

    Raises:
        RateLimitExceededError: If the request exceeds the limit.
    """
    config = get_config(config)
    limit = get_scope_limit(scope, config)
    if limit <= 0:
        return 0

    window = int(config.rate_limit_window.total_seconds())
    window_start = int(time.time()) // window * window
    cache_key = f'rate-limit:{scope}:{client_key}:{window_start}'

    if cache.add(cache_key, 1, timeout=window):
        count = 1
    else:
        try:
            count = cache.incr(cache_key)
        except ValueError:
            # Counter expired between add and incr
            cache.add(cache_key, 1, timeout=window)
            count = 1

    if count > limit:
        retry_after = window_start + window - int(time.time())
        logger.warning(
            'Rate limit exceeded for %s on %s: %d/%d',
            client_key,
            scope,
            count,
            limit,
        )
        raise RateLimitExceededError(scope, limit, max(retry_after, 1))
    return count


def rate_limited(
    scope: str,
) -> Callable[[Callable[_Params, _Result]], Callable[..., _Result]]:
    """Guard an operation with the rate limit of ``scope``.

    The wrapped function takes an extra keyword-only ``client_key``.
    Calls without one (internal callers, jobs) are not limited. The
    ``config`` keyword, when given, is used for the limit too.

    Example:
        @rate_limited(UPLOADS_SCOPE)
        def store_file(...): ...

        store_file(stream, 'a.txt', client_key='203.0.113.7')
    """

    def decorator(
        func: Callable[_Params, _Result],
    ) -> Callable[..., _Result]:
        @functools.wraps(func)
        def wrapper(  # noqa: WPS430
            *args: Any,
            client_key: str | None = None,
            **kwargs: Any,
        ) -> _Result:
            if client_key is not None:
                check_rate_limit(client_key, scope, kwargs.get('config'))
            return func(*args, **kwargs)

        return wrapper

    return decorator
