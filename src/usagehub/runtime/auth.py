"""Bounded refresh-and-retry for bearer-token requests.

Providers call :func:`retry_once_on_auth` with two callables: one that
performs the request with a given token, and one that refreshes the token.
A stale token is tolerated exactly once; a permanently invalid credential
yields at most two requests and one refresh, never a loop.
"""

from __future__ import annotations

from typing import Callable, Optional

import httpx

AUTH_FAILURE_STATUSES = frozenset({401, 403})


def is_auth_status(status: int) -> bool:
    """Return True for HTTP statuses that mean the token was rejected."""
    return status in AUTH_FAILURE_STATUSES


def retry_once_on_auth(
    perform_request: Callable[[Optional[str]], httpx.Response],
    refresh: Callable[[], Optional[str]],
) -> httpx.Response:
    """Run *perform_request*, refreshing and retrying once on 401/403.

    Args:
        perform_request: Called first with ``None`` (meaning "use the token
            you already have") and, after a successful refresh, once more
            with the new token. Exceptions propagate.
        refresh: Returns a new token, or ``None`` / ``""`` when there is
            nothing to refresh. Exceptions propagate without a retry.

    Returns:
        The first response if it was not an auth failure or no new token
        was obtained; otherwise the retry's response, whatever its status.
    """
    response = perform_request(None)
    if not is_auth_status(response.status_code):
        return response

    token = refresh()
    if not token:
        return response

    return perform_request(token)
