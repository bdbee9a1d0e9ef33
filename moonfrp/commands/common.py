"""Helpers shared by the command modules."""

from dataclasses import replace
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from moonfrp.config import SettingsError, load_settings
from moonfrp.core import EXIT_ENGINE_ERROR, Runtime, open_runtime
from moonfrp.engine.models import EngineError, TargetFilter
from moonfrp.logging_utils import configure_logging

console = Console()


def get_runtime(ctx: typer.Context) -> Runtime:
    """Load settings, configure logging and open the index, or exit 255."""
    obj = ctx.find_root().obj or {}
    settings_path: Path | None = obj.get("settings_path")
    try:
        settings = load_settings(settings_path)
    except SettingsError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]", soft_wrap=True)
        raise typer.Exit(code=EXIT_ENGINE_ERROR)
    if obj.get("log_level"):
        settings = replace(settings, log_level=obj["log_level"].upper())
    configure_logging(settings)
    try:
        return open_runtime(settings)
    except (EngineError, OSError) as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]", soft_wrap=True)
        raise typer.Exit(code=EXIT_ENGINE_ERROR)


def parse_filter(text: str) -> TargetFilter:
    try:
        return TargetFilter.parse(text)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--filter")


def fail(message: str, code: int = EXIT_ENGINE_ERROR) -> typer.Exit:
    """Print an error line and return the Exit to raise."""
    console.print(f"[red]❌ {escape(message)}[/red]", soft_wrap=True)
    return typer.Exit(code=code)
