"""Canonical Pydantic models shared across all usagehub modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Output models** -- serialised to JSON for the presentation layer with
camelCase keys:
    :class:`ProgressFormat`, :class:`MetricLine`, :class:`PluginOutput`.

**Provider models** -- exchanged between providers and the manager:
    :class:`QueryResult`, :class:`DiscoveryResult`.

**Manifest models** -- parsed from ``<plugins_dir>/<id>/plugin.json``:
    :class:`ManifestLine`, :class:`PluginManifest`, :class:`LoadedManifest`.

The module also provides the line constructors (:func:`text_line`,
:func:`progress_line`, :func:`badge_line`, :func:`error_lines`) that
providers use instead of building :class:`MetricLine` instances by hand, so
that optional fields are only set when they carry a value.

Use :meth:`PluginOutput.to_wire` to obtain the external JSON shape::

    output.to_wire()
    # {"providerId": "claude", "displayName": "Claude", "lines": [...]}
"""

from __future__ import annotations

import enum
import math
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Metric lines ---


class LineType(str, enum.Enum):
    """Display variant of a :class:`MetricLine`."""

    TEXT = "text"
    PROGRESS = "progress"
    BADGE = "badge"


class FormatKind(str, enum.Enum):
    """How the ``used`` / ``limit`` pair of a progress line is rendered."""

    PERCENT = "percent"
    DOLLARS = "dollars"
    COUNT = "count"


class ProgressFormat(BaseModel):
    """Rendering hint for a progress line.

    ``suffix`` is only meaningful for :attr:`FormatKind.COUNT` (e.g.
    ``"credits"``, ``"tokens"``).
    """

    kind: FormatKind
    suffix: Optional[str] = None


class MetricLine(BaseModel):
    """One displayable usage row.

    Exactly one of three shapes is populated depending on :attr:`type`:

    - ``text``: ``label`` + ``value``
    - ``progress``: ``label`` + ``used`` / ``limit`` + ``format`` and
      optionally ``resets_at`` / ``period_duration_ms``
    - ``badge``: ``label`` + ``text``

    Any variant may carry ``color`` and ``subtitle``.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: LineType
    label: str
    value: Optional[str] = None
    text: Optional[str] = None
    used: Optional[float] = None
    limit: Optional[float] = None
    format: Optional[ProgressFormat] = None
    resets_at: Optional[str] = Field(default=None, alias="resetsAt")
    period_duration_ms: Optional[int] = Field(default=None, alias="periodDurationMs")
    color: Optional[str] = None
    subtitle: Optional[str] = None


def percent_format() -> ProgressFormat:
    return ProgressFormat(kind=FormatKind.PERCENT)


def dollars_format() -> ProgressFormat:
    return ProgressFormat(kind=FormatKind.DOLLARS)


def count_format(suffix: str) -> ProgressFormat:
    return ProgressFormat(kind=FormatKind.COUNT, suffix=suffix or None)


def text_line(
    label: str,
    value: str,
    color: Optional[str] = None,
    subtitle: Optional[str] = None,
) -> MetricLine:
    """Build a ``text`` line. Empty *color* / *subtitle* are left unset."""
    return MetricLine(
        type=LineType.TEXT,
        label=label,
        value=value,
        color=color or None,
        subtitle=subtitle or None,
    )


def badge_line(
    label: str,
    text: str,
    color: Optional[str] = None,
    subtitle: Optional[str] = None,
) -> MetricLine:
    """Build a ``badge`` line. Empty *color* / *subtitle* are left unset."""
    return MetricLine(
        type=LineType.BADGE,
        label=label,
        text=text,
        color=color or None,
        subtitle=subtitle or None,
    )


def progress_line(
    label: str,
    used: float,
    limit: float,
    fmt: ProgressFormat,
    resets_at: Optional[str] = None,
    period_duration_ms: Optional[int] = None,
    color: Optional[str] = None,
    subtitle: Optional[str] = None,
) -> MetricLine:
    """Build a ``progress`` line.

    Args:
        label: Row label, e.g. ``"Session"``.
        used: Amount consumed in the units of *fmt*.
        limit: Quota ceiling in the units of *fmt*.
        fmt: One of :func:`percent_format`, :func:`dollars_format`,
            :func:`count_format`.
        resets_at: ISO-8601 timestamp of the next reset. Empty means unknown.
        period_duration_ms: Length of the quota window. Non-positive values
            are dropped.
        color: Optional CSS colour.
        subtitle: Optional secondary text.
    """
    return MetricLine(
        type=LineType.PROGRESS,
        label=label,
        used=used,
        limit=limit,
        format=fmt,
        resets_at=resets_at or None,
        period_duration_ms=period_duration_ms if period_duration_ms and period_duration_ms > 0 else None,
        color=color or None,
        subtitle=subtitle or None,
    )


ERROR_COLOR = "#ef4444"
MUTED_COLOR = "#a3a3a3"


def error_lines(message: str) -> list[MetricLine]:
    """Return the single red ``Error`` badge used for placeholders and failures."""
    return [badge_line("Error", message, color=ERROR_COLOR)]


def clamp(value: float, lower: float, upper: float) -> float:
    if value < lower:
        return lower
    if value > upper:
        return upper
    return value


def round_to(value: float, decimals: int) -> float:
    """Round half away from zero to *decimals* places."""
    factor = 10 ** decimals
    scaled = value * factor
    rounded = math.floor(abs(scaled) + 0.5)
    return math.copysign(rounded, scaled) / factor


# --- Provider results ---


class QueryResult(BaseModel):
    """Transient result returned by a provider's ``query``.

    Never persisted. An empty ``lines`` list is valid and is replaced by a
    ``"No usage data"`` placeholder in the manager.
    """

    plan: str = ""
    lines: list[MetricLine] = Field(default_factory=list)


class PluginOutput(BaseModel):
    """Externally visible record produced exactly once per requested id.

    ``lines`` is never empty once the manager has finished with it.
    """

    model_config = ConfigDict(populate_by_name=True)

    provider_id: str = Field(alias="providerId")
    display_name: str = Field(alias="displayName")
    plan: Optional[str] = None
    lines: list[MetricLine]
    icon_url: Optional[str] = Field(default=None, alias="iconUrl")
    error: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        """Return the camelCase JSON-ready dict with unset fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DiscoveryResult(BaseModel):
    """Outcome of one local language-server discovery probe.

    Never cached: the server process may have restarted on a new port
    between two queries.

    Attributes:
        pid: Process id of the matched server.
        csrf: Value of the required token flag.
        ports: TCP ports the process listens on, ascending.
        extra: Requested extra flags, keyed without leading dashes.
        extension_port: Port declared on the command line, if parseable.
    """

    pid: int
    csrf: str
    ports: list[int] = Field(default_factory=list)
    extra: dict[str, str] = Field(default_factory=dict)
    extension_port: Optional[int] = None


# --- Manifests ---


class ManifestLine(BaseModel):
    """Declared line schema entry from a plugin manifest."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = ""
    label: str = ""
    scope: str = ""
    primary_order: Optional[int] = Field(default=None, alias="primaryOrder")


class PluginManifest(BaseModel):
    """Static provider descriptor read from ``plugin.json``.

    Unknown keys are ignored. Every field has a default so that partial
    descriptors parse; the loader rejects those without an ``id``.
    """

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=0, alias="schemaVersion")
    id: str = ""
    name: str = ""
    version: str = ""
    entry: str = ""
    icon: str = ""
    brand_color: Optional[str] = Field(default=None, alias="brandColor")
    lines: list[ManifestLine] = Field(default_factory=list)


class LoadedManifest(BaseModel):
    """A parsed manifest plus the directory it came from and its embedded icon."""

    model_config = ConfigDict(frozen=True)

    manifest: PluginManifest
    plugin_dir: Path
    icon_data_url: str = ""
