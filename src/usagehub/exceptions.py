"""Exception hierarchy for usagehub.

All exceptions inherit from :class:`UsageHubError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`usagehub.exit_codes`.
The CLI entry point in :func:`usagehub.app.main` catches ``UsageHubError``
and exits with the matching code.

Two families matter to the :class:`~usagehub.manager.Manager`:

* **Hard errors** (:class:`ConfigError`, :class:`IOError_`) describe a broken
  host -- an unreadable plugins directory or a data directory that cannot be
  created. They propagate out of ``query_one`` / ``query_all``.
* **Provider errors** (everything else) are folded into the ``error`` field of
  the provider's :class:`~usagehub.models.PluginOutput` and never escape.

Subclass hierarchy::

    UsageHubError (exit 1)
    +-- ConfigError        (exit 1)
    +-- IOError_           (exit 1)
    +-- DataError          (exit 1)
    +-- NotFoundError      (exit 4)
    +-- TransportError     (exit 6)
    +-- ProviderError      (exit 10)
        +-- AuthError      (exit 3)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from usagehub.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_PLUGIN_ERROR,
)

if TYPE_CHECKING:
    from usagehub.models import QueryResult


class UsageHubError(Exception):
    """Base exception for all usagehub errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`usagehub.exit_codes`.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(UsageHubError):
    """Raised for invalid construction input (empty plugin id, unreadable explicit plugins dir, bad config JSON)."""

    exit_code = EXIT_GENERIC_FAILURE


class IOError_(UsageHubError):
    """Raised on filesystem failures such as a data directory that cannot be created.

    Named with a trailing underscore to avoid shadowing the built-in
    ``IOError`` alias of :class:`OSError`.
    """

    exit_code = EXIT_GENERIC_FAILURE


class DataError(UsageHubError):
    """Raised when a response payload or stored blob cannot be decoded."""

    exit_code = EXIT_GENERIC_FAILURE


class NotFoundError(UsageHubError):
    """Raised when a requested provider id is neither a manifest nor a live provider."""

    exit_code = EXIT_NOT_FOUND


class TransportError(UsageHubError):
    """Raised on network-level or subprocess failures (timeout, refused connection, missing binary)."""

    exit_code = EXIT_CONNECTION_ERROR


class ProviderError(UsageHubError):
    """Raised by a provider whose query failed.

    A provider may have collected some lines before failing; those are
    attached as *partial* so that the manager can still show them next to
    the error message.

    Args:
        message: User-facing description, copied verbatim into
            ``PluginOutput.error``.
        partial: Optional result gathered before the failure.
    """

    exit_code = EXIT_PLUGIN_ERROR

    def __init__(self, message: str, partial: Optional[QueryResult] = None):
        super().__init__(message)
        self.partial = partial


class AuthError(ProviderError):
    """Raised when credentials are rejected and the bounded refresh did not help.

    A :class:`ProviderError`, so the manager folds it into the output record
    like any other provider failure.
    """

    exit_code = EXIT_AUTH_FAILURE
