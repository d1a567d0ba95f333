"""Tests for request rate limiting."""

import dataclasses

import pytest

from server.apps.files.exceptions import RateLimitExceededError
from server.apps.files.logic.rate_limiting import (
    DOWNLOADS_SCOPE,
    UPLOADS_SCOPE,
    check_rate_limit,
    rate_limited,
)


def test_check_rate_limit_counts_requests(hosting_config):
    """Requests within the limit are counted."""
    assert check_rate_limit('client', UPLOADS_SCOPE, hosting_config) == 1
    assert check_rate_limit('client', UPLOADS_SCOPE, hosting_config) == 2


def test_check_rate_limit_rejects_over_limit(hosting_config):
    """The request after the limit is rejected."""
    for _ in range(hosting_config.rate_limit_uploads):
        check_rate_limit('client', UPLOADS_SCOPE, hosting_config)

    with pytest.raises(RateLimitExceededError) as exc_info:
        check_rate_limit('client', UPLOADS_SCOPE, hosting_config)

    assert exc_info.value.scope == UPLOADS_SCOPE
    assert exc_info.value.limit == hosting_config.rate_limit_uploads
    assert exc_info.value.retry_after >= 1
    assert exc_info.value.retryable


def test_clients_and_scopes_are_independent(hosting_config):
    """Each client and scope has its own counter."""
    for _ in range(hosting_config.rate_limit_uploads):
        check_rate_limit('client-a', UPLOADS_SCOPE, hosting_config)

    assert check_rate_limit('client-b', UPLOADS_SCOPE, hosting_config) == 1
    assert check_rate_limit('client-a', DOWNLOADS_SCOPE, hosting_config) == 1


def test_zero_limit_disables(hosting_config):
    """A limit of 0 means unlimited."""
    config = dataclasses.replace(hosting_config, rate_limit_uploads=0)

    for _ in range(100):
        assert check_rate_limit('client', UPLOADS_SCOPE, config) == 0


def test_unknown_scope(hosting_config):
    """Unknown scopes are a programming error."""
    with pytest.raises(ValueError, match='Unknown rate limit scope'):
        check_rate_limit('client', 'streaming', hosting_config)


def test_decorator_limits_only_keyed_calls(hosting_config):
    """Calls without client_key bypass the limiter."""
    @rate_limited(UPLOADS_SCOPE)
    def operation(*, config=None):
        return 'done'

    for _ in range(10):
        assert operation(config=hosting_config) == 'done'

    for _ in range(hosting_config.rate_limit_uploads):
        operation(config=hosting_config, client_key='client')
    with pytest.raises(RateLimitExceededError):
        operation(config=hosting_config, client_key='client')
