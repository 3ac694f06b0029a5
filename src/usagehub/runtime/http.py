"""One-shot HTTP requests for providers.

:func:`request` wraps a short-lived :class:`httpx.Client` per call: there is
no connection reuse between providers, redirects are never followed (a
redirect from a usage endpoint usually means a login page), and every
network-level failure is raised as
:class:`~usagehub.exceptions.TransportError`. HTTP error statuses are *not*
raised; callers inspect ``response.status_code`` themselves because 401/403
drive the refresh protocol in :mod:`usagehub.runtime.auth`.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from usagehub.exceptions import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
"""Seconds allowed for a usage request."""

REFRESH_TIMEOUT = 15.0
"""Seconds allowed for an OAuth token refresh."""


def request(
    method: str,
    url: str,
    headers: Optional[dict[str, str]] = None,
    body: Optional[str] = None,
    timeout: Optional[float] = None,
    verify: bool = True,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Response:
    """Send a single request and return the fully-read response.

    Args:
        method: HTTP method. Blank defaults to ``GET``.
        url: Absolute URL.
        headers: Request headers.
        body: Raw request body text.
        timeout: Seconds; non-positive or ``None`` uses :data:`DEFAULT_TIMEOUT`.
        verify: Set to ``False`` to accept self-signed certificates (local
            language servers).
        transport: Optional transport override, e.g. :class:`httpx.MockTransport`.

    Raises:
        TransportError: On connection, timeout, or protocol failures.
    """
    method = (method or "").strip().upper() or "GET"
    if not timeout or timeout <= 0:
        timeout = DEFAULT_TIMEOUT

    try:
        with httpx.Client(
            timeout=timeout,
            verify=verify,
            follow_redirects=False,
            transport=transport,
        ) as client:
            response = client.request(
                method,
                url,
                headers=headers,
                content=body.encode("utf-8") if body else None,
            )
            response.read()
    except httpx.HTTPError as exc:
        logger.debug("%s %s failed: %s", method, url, exc)
        raise TransportError(f"request failed: {exc}") from exc
    return response
