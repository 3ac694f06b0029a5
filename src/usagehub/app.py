"""Typer application and CLI entry point for usagehub.

The root callback resolves the plugins and data directories
(:func:`~usagehub.config.resolve_config`) and configures logging. The two
commands build a :class:`~usagehub.manager.Manager` over
:func:`~usagehub.providers.builtin_providers`:

* ``list``: catalog ids in order.
* ``query [IDS...]``: one record per id, as JSON or a table.

``config show|set|reset`` (:mod:`usagehub.commands.config`) edits the
stored defaults.

:func:`main` is the console-script entry point declared in
``pyproject.toml``. Unhandled exceptions are written to a crash log under
the data directory.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import typer

from usagehub import __version__
from usagehub.exit_codes import EXIT_GENERIC_FAILURE

if TYPE_CHECKING:
    from usagehub.config import GlobalConfig
    from usagehub.manager import Manager

app = typer.Typer(
    name="usagehub",
    help="Query AI coding assistant usage and quotas.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

_cli_data_dir: Optional[str] = None
"""The ``--data-dir`` flag of the running invocation, for the crash log."""


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"usagehub {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    plugins_dir: Optional[str] = typer.Option(
        None, "--plugins-dir", help="Directory of <id>/plugin.json manifests."
    ),
    data_dir: Optional[str] = typer.Option(
        None, "--data-dir", help="Root for per-provider private data."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~usagehub.output.OutputManager`, routes
    logging to stderr, and stores directory overrides in ``ctx.obj``.
    """
    from usagehub.output import OutputFormat, OutputManager, set_output, setup_logging

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, verbose=verbose)
    set_output(output)
    setup_logging(verbose, output.stderr_console)

    ctx.ensure_object(dict)
    ctx.obj["plugins_dir"] = plugins_dir
    ctx.obj["data_dir"] = data_dir

    global _cli_data_dir
    _cli_data_dir = data_dir


def _build_manager(ctx: typer.Context) -> tuple[Manager, GlobalConfig]:
    """Return the manager and effective config for the resolved directories."""
    from usagehub.config import resolve_config
    from usagehub.manager import Manager
    from usagehub.providers import builtin_providers

    obj = ctx.obj or {}
    config = resolve_config(obj.get("plugins_dir"), obj.get("data_dir"))
    manager = Manager(
        builtin_providers(),
        plugins_dir=config.plugins_dir,
        data_dir=config.data_dir,
    )
    return manager, config


def _fail(exc: Exception) -> typer.Exit:
    from usagehub.output import error

    error(str(exc))
    return typer.Exit(code=getattr(exc, "exit_code", EXIT_GENERIC_FAILURE))


@app.command("list")
def list_command(ctx: typer.Context) -> None:
    """List provider ids in catalog order."""
    from usagehub.exceptions import UsageHubError
    from usagehub.output import get_output

    try:
        manager, _ = _build_manager(ctx)
    except UsageHubError as exc:
        raise _fail(exc) from exc
    get_output().print_ids(manager.list_ids())


@app.command("query")
def query_command(
    ctx: typer.Context,
    ids: Optional[list[str]] = typer.Argument(
        None, help="Provider ids to query. Defaults to the configured ids, or all."
    ),
) -> None:
    """Query usage for one or more providers."""
    from usagehub.exceptions import NotFoundError, UsageHubError
    from usagehub.output import get_output

    try:
        manager, config = _build_manager(ctx)
        targets = list(ids or config.default_ids)
        unknown = [pid for pid in targets if not manager.has_provider(pid)]
        if unknown:
            raise NotFoundError(f"Unknown provider id(s): {', '.join(unknown)}")
        outputs = manager.query_all(targets)
    except UsageHubError as exc:
        raise _fail(exc) from exc

    get_output().print_outputs(outputs)


def _register_subcommands() -> None:
    from usagehub.commands.config import config_app

    app.add_typer(config_app, name="config", help="Configuration management.")


_register_subcommands()


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _crash_data_dir() -> Optional[str]:
    """Resolve the data directory the failed command was using."""
    from usagehub.config import resolve_config
    from usagehub.exceptions import UsageHubError

    try:
        return resolve_config(cli_data_dir=_cli_data_dir).data_dir
    except UsageHubError:
        return _cli_data_dir


def _write_crash_log(exc: Exception, data_dir: Optional[str] = None) -> Optional[str]:
    """Write the current traceback under ``<data_dir>/logs`` and return its path.

    Args:
        exc: The unhandled exception to log.
        data_dir: Resolved data directory; ``None`` selects
            :func:`~usagehub.config.default_data_dir`.

    Returns:
        The log file path, or ``None`` if it could not be written.
    """
    from usagehub.config import default_data_dir
    from usagehub.output import warning

    logs_dir = (Path(data_dir) if data_dir else default_data_dir()) / "logs"
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_path.write_text(traceback.format_exc())
    except OSError as write_exc:
        warning(f"Cannot write crash log to {logs_dir}: {write_exc}")
        return None
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``usagehub`` console script.

    :class:`~usagehub.exceptions.UsageHubError` instances that escape a
    command exit with the error's ``exit_code``. Anything else produces a
    crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from usagehub.exceptions import UsageHubError
        from usagehub.output import error

        if isinstance(exc, UsageHubError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc, _crash_data_dir())
        if log_path is not None:
            error(f"Unexpected error. Debug log: {log_path}")
        else:
            error(f"Unexpected error: {exc}")
        sys.exit(EXIT_GENERIC_FAILURE)
