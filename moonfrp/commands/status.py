"""Quick status command backed by the stale-while-revalidate cache."""

import typer

from moonfrp.commands.common import console, fail, get_runtime
from moonfrp.engine.models import CacheError
from moonfrp.status import STATUS_KEY, build_status_cache, render_status

# How long to let a background refresh finish before the process exits
REFRESH_GRACE_SECONDS = 2.0


def status(
    ctx: typer.Context,
    refresh: bool = typer.Option(False, "--refresh", help="Recompute before showing"),
):
    """Show configs, proxies and service health at a glance."""
    runtime = get_runtime(ctx)
    try:
        try:
            cache = build_status_cache(runtime.settings, runtime.index, runtime.supervisor)
            if refresh:
                payload, stale = cache.force_refresh(STATUS_KEY), False
            else:
                payload, stale = cache.get(STATUS_KEY)
        except CacheError as e:
            raise fail(str(e))
        render_status(console, payload, stale=stale, refreshing=cache.is_refreshing(STATUS_KEY))
        cache.wait_idle(STATUS_KEY, timeout=REFRESH_GRACE_SECONDS)
    finally:
        runtime.close()
