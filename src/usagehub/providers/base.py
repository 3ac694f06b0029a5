"""Abstract base class for usage providers.

A provider knows how to obtain one vendor's usage numbers. It implements
two members:

1. :attr:`Provider.id` -- the stable catalog key (``"claude"``).
2. :meth:`Provider.query` -- produce a :class:`~usagehub.models.QueryResult`
   using the services in :mod:`usagehub.runtime`.

Providers report failure by raising
:class:`~usagehub.exceptions.ProviderError` with a user-facing message,
optionally attaching whatever lines they gathered first. The
:class:`~usagehub.manager.Manager` turns that (or any other exception) into
the ``error`` field of the output record.

Example::

    class StaticProvider(Provider):
        @property
        def id(self) -> str:
            return "static"

        def query(self, env):
            return QueryResult(lines=[text_line("Status", "OK")])
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from usagehub.models import QueryResult
from usagehub.runtime.env import PluginEnv


class Provider(ABC):
    """Base class for all usage providers."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Return the unique provider id used as catalog key."""
        ...

    @abstractmethod
    def query(self, env: PluginEnv) -> QueryResult:
        """Fetch current usage.

        Args:
            env: Fresh execution environment for this call.

        Returns:
            The plan label and metric lines. Zero lines is allowed.

        Raises:
            ProviderError: With a user-facing message when usage cannot be
                obtained.
        """
        ...
