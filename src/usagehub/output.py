"""Output formatting with strict stdout/stderr discipline.

* **stdout**: query results only (a JSON array, a Rich table, or
  tab-separated rows). This is what downstream tools pipe and parse.
* **stderr**: diagnostics and log records. Never mixed into the data.
* **TTY detection**: Rich tables when stdout is an interactive terminal,
  plain text when piped.
* **Colour control**: respects ``NO_COLOR`` and ``TERM=dumb``.

:class:`OutputManager` is created once in :func:`~usagehub.app.main_callback`
and installed with :func:`set_output`; :func:`setup_logging` routes the
standard :mod:`logging` tree to stderr through Rich.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from enum import Enum
from typing import Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from usagehub.models import FormatKind, LineType, MetricLine, PluginOutput


class OutputFormat(str, Enum):
    """``AUTO`` resolves to ``RICH`` on an interactive TTY, else ``PLAIN``."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


RESULT_HEADERS = ["Provider", "Plan", "Metric", "Value"]


class OutputManager:
    """Routes results to stdout and diagnostics to stderr.

    Args:
        format: Desired output format. ``AUTO`` resolves based on TTY
            detection.
        no_color: Disable all colour and Rich markup.
        verbose: Enable debug-level messages on stderr.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            self._format = (
                OutputFormat.RICH if _is_tty() and not self._no_color else OutputFormat.PLAIN
            )
        else:
            self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(self._format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    @property
    def stderr_console(self) -> Console:
        return self._stderr

    # ------------------------------------------------------------------ #
    # Data output (stdout)
    # ------------------------------------------------------------------ #

    def print_data(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    def print_ids(self, ids: Sequence[str]) -> None:
        if self._format == OutputFormat.JSON:
            self.print_data(json.dumps(list(ids), indent=2))
            return
        for provider_id in ids:
            self.print_data(provider_id)

    def print_outputs(self, outputs: Sequence[PluginOutput]) -> None:
        """Render query results in the active format.

        * **JSON**: the wire records (camelCase, unset fields omitted).
        * **Plain**: one tab-separated row per metric line.
        * **Rich**: a table with one row per metric line, errors in red.
        """
        if self._format == OutputFormat.JSON:
            records = [output.to_wire() for output in outputs]
            self.print_data(json.dumps(records, indent=2, ensure_ascii=False))
            return

        rows = [
            [output.display_name, output.plan or "", line.label, format_line(line)]
            for output in outputs
            for line in output.lines
        ]
        if self._format == OutputFormat.PLAIN:
            for row in rows:
                self.print_data("\t".join(row))
            return

        table = Table(show_header=True, header_style="bold cyan")
        for header in RESULT_HEADERS:
            table.add_column(header)
        for output in outputs:
            style = "red" if output.error else None
            for line in output.lines:
                table.add_row(
                    output.display_name,
                    output.plan or "",
                    line.label,
                    format_line(line),
                    style=style,
                )
        self._stdout.print(table)

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def success(self, message: str) -> None:
        if self._no_color:
            print(message, file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        if self._no_color:
            print(f"Warning: {message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        """Print a bold-red error to stderr. Never suppressed."""
        if self._no_color:
            print(f"Error: {message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[bold red]Error:[/bold red] {message}")


# ------------------------------------------------------------------ #
# Line rendering
# ------------------------------------------------------------------ #


def _number(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def format_line(line: MetricLine) -> str:
    """Render one metric line as a short human-readable value."""
    if line.type == LineType.TEXT:
        return line.value or ""
    if line.type == LineType.BADGE:
        return line.text or ""

    used = line.used or 0
    limit = line.limit or 0
    kind = line.format.kind if line.format else FormatKind.PERCENT
    if kind == FormatKind.PERCENT:
        value = f"{_number(used)}%"
    elif kind == FormatKind.DOLLARS:
        value = f"${used:,.2f} / ${limit:,.2f}"
    else:
        suffix = f" {line.format.suffix}" if line.format and line.format.suffix else ""
        value = f"{_number(used)} / {_number(limit)}{suffix}"
    if line.resets_at:
        value += f" (resets {line.resets_at})"
    return value


# ------------------------------------------------------------------ #
# Logging
# ------------------------------------------------------------------ #


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> None:
    """Send ``usagehub`` log records to stderr through Rich.

    ``WARNING`` and above by default, ``DEBUG`` with *verbose*. Calling it
    again replaces the previously installed handler.
    """
    root = logging.getLogger("usagehub")
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set (any value) or ``TERM=dumb``."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    return os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Global output instance (set during app startup)
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed manager, creating an ``AUTO`` one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the global manager. Used by tests."""
    global _output
    _output = None


def error(message: str) -> None:
    get_output().error(message)


def warning(message: str) -> None:
    get_output().warning(message)


def success(message: str) -> None:
    get_output().success(message)
