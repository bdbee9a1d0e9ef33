"""
Bulk service operations.

Applies start/stop/restart/reload to every service a filter selects, in
parallel, and reports every failure at the end.
"""

import typer
from rich.markup import escape

from moonfrp.commands.common import console, fail, get_runtime, parse_filter
from moonfrp.core import EXIT_INTERRUPTED, failure_exit_code
from moonfrp.engine.bulk import BulkServiceOperator
from moonfrp.engine.executor import BoundedExecutor
from moonfrp.engine.models import BatchCancelled, BatchReport, EngineError, Operation
from moonfrp.engine.progress import ProgressLine

OPERATIONS = [op.value for op in Operation.service_operations()]


def print_report(operation: str, report: BatchReport) -> None:
    console.print(f"[green]✓ {operation}: {report.succeeded}/{report.total} succeeded[/green]")
    console.print(f"[red]✗ Failed: {report.failed}[/red]")
    for service, reason in report.failures:
        console.print(f"  - {escape(service)}: {escape(reason)}", soft_wrap=True)


def bulk(
    ctx: typer.Context,
    operation: str = typer.Option(
        ..., "--operation", "-o", help=f"Operation to apply: {', '.join(OPERATIONS)}"
    ),
    filter_text: str = typer.Option(
        "all",
        "--filter",
        "-f",
        help="all, tag:<key>[:<value>], status:<state>, name:<pattern> or type:<type>",
    ),
    max_parallel: int = typer.Option(
        None, "--max-parallel", "-p", help="Concurrent operations (default from settings)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="List targets without acting"),
):
    """Run a service operation on many moonfrp services at once."""
    if operation not in OPERATIONS:
        raise typer.BadParameter(
            f"Invalid operation '{operation}'. Use: {', '.join(OPERATIONS)}",
            param_hint="--operation",
        )
    if max_parallel is not None and max_parallel < 1:
        raise typer.BadParameter("must be at least 1", param_hint="--max-parallel")
    target = parse_filter(filter_text)

    runtime = get_runtime(ctx)
    try:
        try:
            runtime.supervisor.ensure_available()
        except EngineError as e:
            raise fail(str(e))
        try:
            services = runtime.supervisor.resolve_targets(target, index=runtime.index)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--filter")

        if not services:
            console.print(f"[yellow]No services matched filter: {escape(str(target))}[/yellow]")
            return

        if dry_run:
            console.print(f"[bold]DRY-RUN: would {operation} {len(services)} services[/bold]")
            for name in services:
                console.print(f"  • {name}")
            return

        console.print(f"[bold]Running {operation} on {len(services)} services...[/bold]")
        operator = BulkServiceOperator(
            runtime.supervisor,
            executor=BoundedExecutor(progress=ProgressLine()),
            timeout_seconds=runtime.settings.service_timeout_seconds,
        )
        try:
            report = operator.run(
                Operation(operation),
                services,
                max_parallel=max_parallel or runtime.settings.service_parallel,
            )
        except BatchCancelled as e:
            print_report(operation, e.report)
            raise fail("Interrupted", code=EXIT_INTERRUPTED)
        except EngineError as e:
            raise fail(str(e))

        print_report(operation, report)
        if report.failed:
            raise typer.Exit(code=failure_exit_code(report.failed))
    finally:
        runtime.close()
