"""Per-query execution environment handed to every provider.

A fresh :class:`PluginEnv` is created for each ``query_one`` call. It gives
the provider a private directory under ``<data_dir>/plugins_data/<id>`` for
cached tokens and state, plus a logger whose records are prefixed with
``[plugin:<id>]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, MutableMapping, Optional

from usagehub.config import default_data_dir
from usagehub.exceptions import ConfigError, IOError_

PLUGINS_DATA_DIRNAME = "plugins_data"


class _PluginLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the provider label."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[plugin:{self.extra['plugin_id']}] {msg}", kwargs


@dataclass(frozen=True)
class PluginEnv:
    """Runtime context for one provider query.

    Attributes:
        plugin_id: The provider being queried.
        data_dir: Shared data root.
        plugin_data_dir: Provider-private subdirectory (exists, persists across calls).
        logger: Diagnostic sink labelled with the provider id.
    """

    plugin_id: str
    data_dir: Path
    plugin_data_dir: Path
    logger: logging.LoggerAdapter


def create_env(plugin_id: str, data_dir: Optional[str | Path] = None) -> PluginEnv:
    """Build the environment for *plugin_id*, creating its data directory.

    Args:
        plugin_id: Provider id. Must be non-empty.
        data_dir: Data root. ``None`` or empty selects
            :func:`~usagehub.config.default_data_dir`.

    Raises:
        ConfigError: If *plugin_id* is empty.
        IOError_: If the provider directory cannot be created.
    """
    if not plugin_id:
        raise ConfigError("plugin id is required")
    root = Path(data_dir) if data_dir else default_data_dir()

    plugin_data_dir = root / PLUGINS_DATA_DIRNAME / plugin_id
    try:
        plugin_data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise IOError_(f"create plugin data dir {plugin_data_dir}: {exc}") from exc

    logger = _PluginLogAdapter(
        logging.getLogger(f"usagehub.plugin.{plugin_id}"),
        {"plugin_id": plugin_id},
    )
    return PluginEnv(
        plugin_id=plugin_id,
        data_dir=root,
        plugin_data_dir=plugin_data_dir,
        logger=logger,
    )
