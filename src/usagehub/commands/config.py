"""Config commands -- view and modify the global configuration.

Provides the ``usagehub config`` sub-command group. Settings live in
``<config_dir>/config.json`` (:class:`~usagehub.config.GlobalConfig`) and
sit below environment variables and CLI flags in
:func:`~usagehub.config.resolve_config`.
"""

from __future__ import annotations

import json

import typer

from usagehub.exit_codes import EXIT_GENERIC_FAILURE, EXIT_INVALID_USAGE
from usagehub.output import error, get_output, success

config_app = typer.Typer(no_args_is_help=True)

LIST_KEYS = frozenset({"default_ids"})


@config_app.command("show")
def config_show() -> None:
    """Show the stored configuration as JSON.

    Example::

        usagehub config show
    """
    from usagehub.config import load_global_config
    from usagehub.exceptions import UsageHubError

    try:
        config = load_global_config()
    except UsageHubError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from exc
    get_output().print_data(json.dumps(config.model_dump(mode="json"), indent=2))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="plugins_dir, data_dir or default_ids."),
    value: str = typer.Argument(
        help="New value. Comma-separated for default_ids; empty clears the key."
    ),
) -> None:
    """Set a configuration value.

    Example::

        usagehub config set default_ids claude,copilot
        usagehub config set data_dir ~/.local/share/usagehub
        usagehub config set plugins_dir ""
    """
    from usagehub.config import GlobalConfig, load_global_config, save_global_config
    from usagehub.exceptions import UsageHubError

    if key not in GlobalConfig.model_fields:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    coerced: object
    if key in LIST_KEYS:
        coerced = [item.strip() for item in value.split(",") if item.strip()]
    else:
        coerced = value.strip() or None

    try:
        config = load_global_config()
        updated = config.model_copy(update={key: coerced})
        save_global_config(updated)
    except UsageHubError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from exc
    except OSError as exc:
        error(f"Cannot write config: {exc}")
        raise typer.Exit(code=EXIT_GENERIC_FAILURE) from exc
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Reset the configuration to defaults.

    Example::

        usagehub config reset --yes
    """
    from usagehub.config import GlobalConfig, save_global_config

    if not yes and not typer.confirm("Reset all config to defaults?"):
        raise typer.Exit()

    try:
        save_global_config(GlobalConfig())
    except OSError as exc:
        error(f"Cannot write config: {exc}")
        raise typer.Exit(code=EXIT_GENERIC_FAILURE) from exc
    success("Configuration reset to defaults.")
