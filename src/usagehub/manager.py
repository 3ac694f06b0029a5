"""Provider manager -- catalog construction and query normalisation.

This module contains :class:`Manager`, the central coordinator of
usagehub. It merges two independent inputs into one catalog:

* **Manifests** loaded from the plugins directory by
  :func:`~usagehub.manifest.load_manifests` (display name, icon).
* **Providers** passed explicitly to the constructor (the live
  implementations, see :func:`usagehub.providers.builtin_providers`).

The catalog is built once in ``__init__`` and only read afterwards, so a
single manager can serve concurrent readers without locking.

Every query produces exactly one :class:`~usagehub.models.PluginOutput`
with at least one line. Provider failures of any kind are folded into the
record's ``error`` field; only a broken data directory (see
:func:`~usagehub.runtime.env.create_env`) is raised, and it aborts
:meth:`Manager.query_all`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from usagehub.config import DEFAULT_PLUGINS_DIR, default_data_dir
from usagehub.exceptions import ConfigError, DataError, IOError_, ProviderError
from usagehub.manifest import load_manifests
from usagehub.models import LoadedManifest, PluginOutput, QueryResult, error_lines
from usagehub.providers.base import Provider
from usagehub.runtime.env import create_env

logger = logging.getLogger(__name__)

NO_DATA = "No data"
NO_USAGE_DATA = "No usage data"
IMPLEMENTATION_UNAVAILABLE = "Plugin implementation unavailable"
INVALID_RESULT = "Provider returned an invalid result"


class Manager:
    """Ordered catalog of providers and the single entry point for queries.

    Catalog order is manifest ids (sorted) followed by ids that only have a
    live provider (sorted).

    Args:
        providers: Live provider implementations. If two share an id the
            later one wins.
        plugins_dir: Manifest directory. When given explicitly it must be
            listable. When ``None`` the default ``usagehub/plugins`` is
            used and may be missing.
        data_dir: Data root for provider environments. ``None`` selects
            :func:`~usagehub.config.default_data_dir`.

    Raises:
        ConfigError: If the manifest directory cannot be listed and was
            given explicitly, or fails for a reason other than not existing.

    Example::

        manager = Manager(builtin_providers())
        for output in manager.query_all():
            print(output.to_wire())
    """

    def __init__(
        self,
        providers: Sequence[Provider],
        plugins_dir: Optional[str | Path] = None,
        data_dir: Optional[str | Path] = None,
    ) -> None:
        explicit = plugins_dir is not None and str(plugins_dir) != ""
        directory = Path(plugins_dir) if explicit else DEFAULT_PLUGINS_DIR

        manifests: dict[str, LoadedManifest] = {}
        manifest_order: list[str] = []
        try:
            manifests, manifest_order = load_manifests(directory)
        except IOError_ as exc:
            # Manifests are optional when running with defaults.
            if explicit or not isinstance(exc.__cause__, FileNotFoundError):
                raise ConfigError(f"load manifests from {directory}: {exc}") from exc
            logger.debug("No manifest directory at %s", directory)

        self._manifests = manifests
        self._providers: dict[str, Provider] = {p.id: p for p in providers}
        self._data_dir = Path(data_dir) if data_dir else default_data_dir()

        seen = set(manifest_order)
        extra = sorted(pid for pid in self._providers if pid not in seen)
        self._order = [*manifest_order, *extra]
        logger.debug(
            "Catalog: %d manifest(s), %d provider(s), order=%s",
            len(manifests), len(self._providers), self._order,
        )

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def list_ids(self) -> list[str]:
        """Return a copy of the catalog order."""
        return list(self._order)

    def has_provider(self, provider_id: str) -> bool:
        """True if *provider_id* has a manifest or a live provider."""
        return provider_id in self._providers or provider_id in self._manifests

    def get_manifest(self, provider_id: str) -> Optional[LoadedManifest]:
        return self._manifests.get(provider_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_one(self, provider_id: str) -> PluginOutput:
        """Query one provider and normalise the outcome.

        Works for any id, including ids outside the catalog (they report
        the implementation as unavailable).

        Raises:
            ConfigError: If a provider is registered under an empty id.
            IOError_: If the provider data directory cannot be created.
        """
        output = PluginOutput(
            provider_id=provider_id,
            display_name=provider_id,
            lines=error_lines(NO_DATA),
        )

        loaded = self._manifests.get(provider_id)
        if loaded is not None:
            if loaded.manifest.name:
                output.display_name = loaded.manifest.name
            output.icon_url = loaded.icon_data_url or None

        provider = self._providers.get(provider_id)
        if provider is None:
            output.error = IMPLEMENTATION_UNAVAILABLE
            output.lines = error_lines(IMPLEMENTATION_UNAVAILABLE)
            return output

        env = create_env(provider_id, self._data_dir)

        try:
            result = provider.query(env)
            if not isinstance(result, QueryResult):
                raise DataError(f"{INVALID_RESULT}: got {type(result).__name__}")
            plan = result.plan
            lines = list(result.lines or [])
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.warning("Provider '%s' failed: %s", provider_id, message)
            partial = exc.partial if isinstance(exc, ProviderError) else None
            return self._fold_failure(output, message, partial)

        output.plan = plan or None
        output.lines = lines or error_lines(NO_USAGE_DATA)
        return output

    @staticmethod
    def _fold_failure(
        output: PluginOutput,
        message: str,
        partial: Optional[QueryResult],
    ) -> PluginOutput:
        output.error = message
        output.lines = error_lines(message)
        if partial is not None:
            if partial.plan:
                output.plan = partial.plan
            if partial.lines:
                output.lines = list(partial.lines)
        return output

    def query_all(self, ids: Optional[Sequence[str]] = None) -> list[PluginOutput]:
        """Query *ids* in order, or the whole catalog when *ids* is empty.

        Provider failures are reported per record. A hard environment
        failure aborts the batch and propagates.
        """
        targets = list(ids) if ids else self.list_ids()
        return [self.query_one(provider_id) for provider_id in targets]
