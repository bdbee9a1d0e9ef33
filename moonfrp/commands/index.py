"""Config index maintenance."""

import typer
from rich.table import Table

from moonfrp.commands.common import console, fail, get_runtime
from moonfrp.engine.models import EngineError

app = typer.Typer(help="Config index maintenance.", no_args_is_help=True)


@app.command("rebuild")
def rebuild(ctx: typer.Context):
    """Reindex every config in the config directory."""
    runtime = get_runtime(ctx)
    try:
        count = runtime.index.rebuild(runtime.settings.config_dir)
        _, total_proxies = runtime.index.stats()
    except (EngineError, OSError) as e:
        raise fail(str(e))
    finally:
        runtime.close()
    console.print(f"[green]✅ Indexed {count} configs ({total_proxies} proxies)[/green]")


@app.command("list")
def list_configs(ctx: typer.Context):
    """Show what the index knows about each config."""
    runtime = get_runtime(ctx)
    try:
        table = Table(title="Config Index")
        table.add_column("Config")
        table.add_column("Type")
        table.add_column("Endpoint")
        table.add_column("Proxies", justify="right")
        table.add_column("Tags")
        for path in runtime.store.list_configs():
            entry = runtime.index.get(path)
            if entry is None:
                continue
            if entry.server_addr and entry.server_port:
                endpoint = f"{entry.server_addr}:{entry.server_port}"
            elif entry.bind_port:
                endpoint = f"bind :{entry.bind_port}"
            else:
                endpoint = "-"
            tags = ", ".join(
                f"{k}:{v}" if v else k for k, v in runtime.index.tags(path).items()
            )
            table.add_row(entry.name, entry.config_type, endpoint, str(entry.proxy_count), tags)
    except EngineError as e:
        raise fail(str(e))
    finally:
        runtime.close()
    console.print(table)
