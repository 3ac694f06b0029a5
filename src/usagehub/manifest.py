"""Static provider metadata read from ``<plugins_dir>/<id>/plugin.json``.

Manifests carry what the presentation layer needs before any provider runs:
a display name, a version, the icon, and the declared line schema. They are
independent of provider implementations: a manifest without a registered
provider still shows up in the catalog (reporting "Plugin implementation
unavailable"), and a provider without a manifest falls back to its id as
display name.

Broken entries never break the catalog. A subdirectory whose descriptor is
missing, unparsable, or has no ``id`` is skipped; ``null`` members fall
back to their defaults; an unreadable icon only leaves the icon URL empty.
"""

from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from usagehub.exceptions import IOError_
from usagehub.models import LoadedManifest, PluginManifest

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "plugin.json"
ICON_MIME = "image/svg+xml"


def icon_data_url(data: bytes) -> str:
    """Embed *data* as a base64 ``data:`` URL."""
    return f"data:{ICON_MIME};base64," + base64.b64encode(data).decode("ascii")


def _drop_nulls(value: Any) -> Any:
    """Remove ``null`` members so the model defaults apply instead."""
    if isinstance(value, dict):
        return {key: _drop_nulls(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [_drop_nulls(item) if item is not None else {} for item in value]
    return value


def _load_one(plugin_dir: Path) -> LoadedManifest | None:
    manifest_path = plugin_dir / MANIFEST_FILENAME
    try:
        raw = manifest_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        logger.debug("No readable %s in %s, skipping", MANIFEST_FILENAME, plugin_dir)
        return None

    try:
        manifest = PluginManifest.model_validate(_drop_nulls(json.loads(raw)))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.debug("Invalid manifest %s, skipping: %s", manifest_path, exc)
        return None
    if not manifest.id:
        logger.debug("Manifest %s has no id, skipping", manifest_path)
        return None

    icon_url = ""
    if manifest.icon:
        try:
            icon_url = icon_data_url((plugin_dir / manifest.icon).read_bytes())
        except (OSError, ValueError) as exc:
            logger.debug("Cannot read icon for '%s': %s", manifest.id, exc)

    return LoadedManifest(manifest=manifest, plugin_dir=plugin_dir, icon_data_url=icon_url)


def load_manifests(directory: str | Path) -> tuple[dict[str, LoadedManifest], list[str]]:
    """Load every manifest under *directory*.

    Args:
        directory: Folder whose immediate subdirectories each hold a
            ``plugin.json``.

    Returns:
        A ``(manifests_by_id, ids)`` tuple; ``ids`` is sorted
        lexicographically regardless of directory listing order.

    Raises:
        IOError_: If *directory* cannot be listed. The original
            :class:`OSError` is chained as ``__cause__``.
    """
    root = Path(directory)
    try:
        entries = sorted(root.iterdir())
    except OSError as exc:
        raise IOError_(f"read plugins dir {root}: {exc}") from exc

    manifests: dict[str, LoadedManifest] = {}
    for entry in entries:
        if not entry.is_dir():
            continue
        loaded = _load_one(entry)
        if loaded is not None:
            manifests[loaded.manifest.id] = loaded

    return manifests, sorted(manifests)
