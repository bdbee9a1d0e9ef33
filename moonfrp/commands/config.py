"""
Config commands - transactional edits across many FRP configs.

Provides:
- bulk-update: set one field on every config a filter selects
- update-from-file: apply a YAML/JSON list of updates as one transaction
- validate: check a single config file
- tag / untag: manage index tags used by tag: filters
"""

from pathlib import Path
from typing import Any

import typer
import yaml
from rich.markup import escape

from moonfrp.commands.common import console, fail, get_runtime, parse_filter
from moonfrp.core import EXIT_FAILED
from moonfrp.engine.models import EngineError, TransactionPlan, TransactionResult
from moonfrp.store.config_store import config_type_for, parse_value

app = typer.Typer(
    help="Config management: bulk updates, validation, tags.",
    no_args_is_help=True,
)


def _show(value: Any) -> str:
    return "<unset>" if value is None else repr(value)


def print_result(result: TransactionResult) -> None:
    for path, warning in result.warnings:
        console.print(f"[yellow]⚠️  {path.name}: {escape(warning)}[/yellow]", soft_wrap=True)

    if result.validation_errors:
        console.print("[red]❌ Validation failed, no files were changed:[/red]")
        for path, reason in result.validation_errors:
            console.print(f"  - {path.name}: {escape(reason)}", soft_wrap=True)
        return

    if result.dry_run:
        console.print("[bold yellow]DRY-RUN (preview only)[/bold yellow]")
        for change in result.previews:
            console.print(
                f"  • {change.path.name}: {change.field_path} "
                f"{escape(_show(change.old_value))} → {escape(_show(change.new_value))}",
                soft_wrap=True,
            )
        console.print(f"{len(result.targets)} configs would be updated")
        return

    if not result.targets:
        console.print("[yellow]No configs matched filter[/yellow]")
        return

    console.print(f"[green]✅ Updated {len(result.changed_files)} configs[/green]")
    for path in result.changed_files:
        console.print(f"  • {path.name}")


def _apply(ctx: typer.Context, plans: list[TransactionPlan], dry_run: bool) -> None:
    runtime = get_runtime(ctx)
    try:
        try:
            result = runtime.transactions().apply_all(plans, dry_run=dry_run)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--filter")
        except EngineError as e:
            raise fail(str(e))
    finally:
        runtime.close()

    print_result(result)
    if result.validation_errors:
        raise typer.Exit(code=EXIT_FAILED)


@app.command("bulk-update")
def bulk_update(
    ctx: typer.Context,
    field: str = typer.Option(..., "--field", help="Dotted field path, e.g. auth.token"),
    value: str = typer.Option(..., "--value", help="New value (TOML literal or plain string)"),
    filter_text: str = typer.Option(
        "all", "--filter", "-f", help="all, type:<type>, tag:<key>[:<value>] or name:<pattern>"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without changing files"),
):
    """Set FIELD to VALUE in every matching config, all or nothing."""
    plan = TransactionPlan.set_field(parse_filter(filter_text), field, parse_value(value), dry_run)
    _apply(ctx, [plan], dry_run)


def load_update_file(path: Path) -> list[TransactionPlan]:
    """Parse ``{"updates": [{"field", "value", "filter"}]}`` from YAML or JSON."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise typer.BadParameter(f"Cannot read update file: {e}", param_hint="FILE")

    updates = data.get("updates") if isinstance(data, dict) else None
    if not isinstance(updates, list) or not updates:
        raise typer.BadParameter("Update file needs a non-empty 'updates' list", param_hint="FILE")

    plans = []
    for number, update in enumerate(updates, start=1):
        if not isinstance(update, dict) or "field" not in update or "value" not in update:
            raise typer.BadParameter(
                f"Update #{number} needs 'field' and 'value'", param_hint="FILE"
            )
        target = parse_filter(str(update.get("filter", "all")))
        plans.append(TransactionPlan.set_field(target, str(update["field"]), update["value"]))
    return plans


@app.command("update-from-file")
def update_from_file(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="YAML or JSON file with an 'updates' list"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without changing files"),
):
    """Apply every update in FILE as one transaction."""
    _apply(ctx, load_update_file(file), dry_run)


@app.command("validate")
def validate(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Config file to check"),
):
    """Validate a single config file."""
    runtime = get_runtime(ctx)
    try:
        try:
            body = runtime.store.read(path)
        except OSError as e:
            raise fail(f"Cannot read {path}: {e}", code=EXIT_FAILED)
        outcome = runtime.validator.validate(body, config_type_for(path))
    finally:
        runtime.close()

    for warning in outcome.warnings:
        console.print(f"[yellow]⚠️  {escape(warning)}[/yellow]")
    if not outcome.ok:
        for error in outcome.errors:
            console.print(f"[red]  - {escape(error)}[/red]", soft_wrap=True)
        console.print(f"[red]❌ {path.name} is invalid[/red]")
        raise typer.Exit(code=EXIT_FAILED)
    console.print(f"[green]✅ {path.name} is valid[/green]")


@app.command("tag")
def tag(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Config file to tag"),
    tag_text: str = typer.Argument(..., metavar="KEY[:VALUE]", help="Tag to set"),
):
    """Attach a tag to a config for use with tag: filters."""
    key, _, value = tag_text.partition(":")
    if not key:
        raise typer.BadParameter("Tag key must not be empty", param_hint="KEY[:VALUE]")
    runtime = get_runtime(ctx)
    try:
        runtime.index.add_tag(path, key, value)
    except (EngineError, OSError) as e:
        raise fail(str(e))
    finally:
        runtime.close()
    console.print(f"[green]✅ Tagged {path.name} with {escape(tag_text)}[/green]")


@app.command("untag")
def untag(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Config file"),
    key: str = typer.Argument(..., help="Tag key to remove"),
):
    """Remove a tag from a config."""
    runtime = get_runtime(ctx)
    try:
        runtime.index.remove_tag(path, key)
    except EngineError as e:
        raise fail(str(e))
    finally:
        runtime.close()
    console.print(f"[green]✅ Removed tag {escape(key)} from {path.name}[/green]")
