"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~usagehub.exceptions.UsageHubError` subclass.
Shell wrappers and status-bar scripts can inspect the exit code to tell a
missing provider apart from a broken data directory without parsing stderr.

Example::

    $ usagehub query nope
    $ echo $?
    4   # EXIT_NOT_FOUND -- no manifest or provider for that id
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_AUTH_FAILURE = 3
"""Credentials were rejected and could not be refreshed."""

EXIT_NOT_FOUND = 4
"""The requested provider id is not part of the catalog."""

EXIT_CONNECTION_ERROR = 6
"""A network or subprocess call failed (timeout, refused, missing binary)."""

EXIT_PLUGIN_ERROR = 10
"""A provider failed while producing its usage report."""
