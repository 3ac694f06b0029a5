"""Sub-command groups registered on the root Typer app."""
