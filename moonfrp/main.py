#!/usr/bin/env python3
"""MoonFRP CLI - Main entry point.

Command groups:
- config: transactional bulk edits, validation, tags
- index: config index maintenance

Core commands: bulk, test-connections, status, version
"""

from pathlib import Path

import typer

from moonfrp.commands import (
    config as config_commands,
    index as index_commands,
)
from moonfrp.commands.bulk import bulk
from moonfrp.commands.connect import check_connections
from moonfrp.commands.status import status
from moonfrp.core import MOONFRP_VERSION

app = typer.Typer(
    name="moonfrp",
    help="MoonFRP: fleet management for FRP servers and clients",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    settings: Path = typer.Option(
        None, "--settings", envvar="MOONFRP_SETTINGS", help="Path to moonfrp.toml"
    ),
    log_level: str = typer.Option(None, "--log-level", help="Override the log level"),
):
    """Manage many FRP services and configs at once."""
    ctx.obj = {"settings_path": settings, "log_level": log_level}


# ============================================================================
# CORE COMMANDS
# ============================================================================
app.command(name="bulk")(bulk)
app.command(name="test-connections")(check_connections)
app.command(name="status")(status)


@app.command()
def version():
    """Show MoonFRP version."""
    typer.echo(f"MoonFRP version: {MOONFRP_VERSION}")


# ============================================================================
# COMMAND GROUPS
# ============================================================================
app.add_typer(config_commands.app, name="config")
app.add_typer(index_commands.app, name="index")


if __name__ == "__main__":
    app()
