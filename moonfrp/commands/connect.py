"""Connectivity check across every client config."""

import typer
from rich.markup import escape

from moonfrp.commands.common import console, fail, get_runtime
from moonfrp.core import EXIT_INTERRUPTED, failure_exit_code
from moonfrp.engine.executor import BoundedExecutor
from moonfrp.engine.models import BatchCancelled, EngineError
from moonfrp.engine.progress import ProgressLine
from moonfrp.engine.prober import ConnectivityProber, summary_line


def _echo(line: str) -> None:
    style = "green" if "✓" in line else "red"
    console.print(f"  [{style}]{escape(line)}[/{style}]", soft_wrap=True)


def check_connections(
    ctx: typer.Context,
    max_parallel: int = typer.Option(
        None, "--max-parallel", "-p", help="Concurrent probes (default from settings)"
    ),
    timeout: float = typer.Option(
        None, "--timeout", "-t", help="Per-probe timeout in seconds (default from settings)"
    ),
):
    """Probe the server endpoint of every client config in parallel."""
    if max_parallel is not None and max_parallel < 1:
        raise typer.BadParameter("must be at least 1", param_hint="--max-parallel")
    runtime = get_runtime(ctx)
    try:
        prober = ConnectivityProber(
            executor=BoundedExecutor(progress=ProgressLine()),
            timeout_seconds=timeout or runtime.settings.probe_timeout_seconds,
            echo=_echo,
        )
        try:
            endpoints = prober.discover(runtime.index)
        except EngineError as e:
            raise fail(str(e))
        if not endpoints:
            console.print("[yellow]No client configs with a server endpoint found[/yellow]")
            return

        console.print(f"[bold]Testing {len(endpoints)} connections...[/bold]")
        try:
            report = prober.run(
                endpoints, max_parallel=max_parallel or runtime.settings.probe_parallel
            )
        except BatchCancelled as e:
            console.print(summary_line(e.report))
            raise fail("Interrupted", code=EXIT_INTERRUPTED)

        console.print(summary_line(report))
        if report.failed:
            raise typer.Exit(code=failure_exit_code(report.failed))
    finally:
        runtime.close()
