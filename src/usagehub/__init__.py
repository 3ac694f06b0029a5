"""usagehub -- Query AI coding assistant usage and quotas from one place.

Each vendor (Claude, Codex, Copilot, Cursor, Windsurf, ...) is a *provider* that knows
where that vendor's tool keeps its credentials and how to turn the vendor's
usage API into a list of metric lines. The :class:`~usagehub.manager.Manager`
merges the providers with optional on-disk manifests (display name, icon)
and normalises every query into one :class:`~usagehub.models.PluginOutput`.

Typical use::

    usagehub list               # catalog ids
    usagehub query claude --json

Modules:
    app: Typer application and CLI entry point.
    manager: Catalog construction and query normalisation.
    manifest: ``plugin.json`` loading.
    models: Pydantic models shared across the package.
    values: Lenient JSON accessors, timestamp and formatting helpers.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stdout/stderr formatting and logging setup.
    runtime: Services for providers (HTTP, credentials, discovery, sqlite).
    providers: Built-in provider implementations.
"""

__version__ = "0.1.0"
