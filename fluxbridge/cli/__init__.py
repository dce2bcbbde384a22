"""fluxbridge CLI — Typer-based command-line interface.

Provides the ``fluxbridge`` command with subcommands to apply, diff and
delete configuration, list retained artifacts and show configuration.

All output uses Rich for formatted terminal display.
"""
