"""Command line entry points.

Commands:
- worker:  run one worker against a backlog of item ids
- monitor: live fleet dashboard (read-only)
- status:  show the lease/completion state of one item
- sweep:   delete coordination records of the current stage
- serve:   run the HTTP API (fleet snapshot, item status, metrics)
"""

import asyncio
import importlib
import inspect
import json
import logging
import sys

import click
from rich.console import Console, Group
from rich.live import Live
from rich.text import Text

from fleet.settings import settings
from fleet.coordinator import Coordinator
from fleet.domain.errors import StoreConnectivityError, StoreError
from fleet.monitor.render import render_snapshot
from fleet.monitor.service import MonitorService
from fleet.store.factory import create_store
from fleet_worker.backlog import DirectoryBacklog, StaticBacklog
from fleet_worker.local_cache import LocalCompletionCache
from fleet_worker.processor import HttpFetchProcessor
from fleet_worker.runner import WorkerRunner


def _build_coordinator(store_url: str, stage: str) -> Coordinator:
    store = create_store(store_url, settings.STORE_CONNECT_TIMEOUT_SECONDS)
    return Coordinator(
        store,
        stage=stage,
        lease_ttl=settings.LEASE_TTL_SECONDS,
        heartbeat_ttl=settings.HEARTBEAT_TTL_SECONDS,
    )


def load_processor(target: str):
    """Resolves 'package.module:attribute'. A class is instantiated with no arguments."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise click.BadParameter(f"expected 'module:attribute', got {target!r}", param_hint="--processor")
    try:
        module = importlib.import_module(module_name)
        processor = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(str(e), param_hint="--processor")
    if inspect.isclass(processor):
        processor = processor()
    if not callable(processor):
        raise click.BadParameter(f"{target} is not callable", param_hint="--processor")
    return processor


@click.group()
@click.option("--store-url", default=lambda: settings.STORE_URL, show_default="FLEET_STORE_URL",
              help="Lease store URL (redis://, postgresql+asyncpg://, sqlite+aiosqlite://, memory://)")
@click.option("--stage", default=lambda: settings.STAGE, show_default="FLEET_STAGE",
              help="Key namespace; each pipeline stage coordinates independently")
@click.option("--log-level", default=lambda: settings.LOG_LEVEL, show_default="FLEET_LOG_LEVEL")
@click.pass_context
def main(ctx: click.Context, store_url: str, stage: str, log_level: str):
    """Coordinate a fleet of workers over a shared lease store."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    ctx.obj = {"store_url": store_url, "stage": stage}


@main.command()
@click.argument("items", nargs=-1)
@click.option("--items-file", type=click.Path(exists=True, dir_okay=False),
              help="File with one item id per line")
@click.option("--backlog-dir", type=click.Path(exists=True, file_okay=False),
              help="Directory of *.json item groups, consumed in random order")
@click.option("--processor", "processor_target", help="Item processor as 'module:attribute'")
@click.option("--url-template", help="Fetch one URL per item, e.g. https://example.com/apps/{item_id}")
@click.option("--worker-id", default=lambda: settings.WORKER_ID, show_default="hostname")
@click.option("--max-retries", default=lambda: settings.MAX_RETRIES, type=click.IntRange(min=0),
              show_default=str(settings.MAX_RETRIES))
@click.option("--item-delay", default=lambda: settings.ITEM_DELAY_SECONDS, type=click.FloatRange(min=0),
              show_default=str(settings.ITEM_DELAY_SECONDS), help="Pause between items (seconds)")
@click.option("--cache-dir", default=lambda: settings.LOCAL_CACHE_DIR, show_default=settings.LOCAL_CACHE_DIR,
              help="Local completion cache directory")
@click.option("--no-local-cache", is_flag=True, help="Always ask the lease store")
@click.option("--no-shuffle", is_flag=True, help="Keep the given item order")
@click.pass_obj
def worker(obj, items, items_file, backlog_dir, processor_target, url_template, worker_id,
           max_retries, item_delay, cache_dir, no_local_cache, no_shuffle):
    """Process ITEMS (or --items-file / --backlog-dir) without double-processing across the fleet.

    Examples:
        fleet worker --url-template "https://zapier.com/apps/{item_id}/integrations" --items-file apps.txt

        fleet --stage categories worker --processor mypkg.scrape:process --backlog-dir data/categories
    """
    if bool(processor_target) == bool(url_template):
        raise click.UsageError("Pass exactly one of --processor or --url-template")
    sources = sum(1 for s in (items, items_file, backlog_dir) if s)
    if sources != 1:
        raise click.UsageError("Pass items as arguments, --items-file or --backlog-dir (exactly one)")

    if backlog_dir:
        backlog = DirectoryBacklog(backlog_dir)
    elif items_file:
        backlog = StaticBacklog.from_file(items_file, shuffle=not no_shuffle)
    else:
        backlog = StaticBacklog(items, shuffle=not no_shuffle)

    processor = load_processor(processor_target) if processor_target else HttpFetchProcessor(url_template)
    local_cache = None if no_local_cache else LocalCompletionCache(cache_dir, worker_id)

    async def _run():
        coordinator = _build_coordinator(obj["store_url"], obj["stage"])
        runner = WorkerRunner(
            coordinator,
            processor,
            worker_id=worker_id,
            local_cache=local_cache,
            max_retries=max_retries,
            heartbeat_interval=settings.HEARTBEAT_INTERVAL_SECONDS,
            item_delay=item_delay,
            retry_base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            retry_max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            handle_signals=True,
        )
        try:
            return await runner.run(backlog)
        finally:
            close = getattr(processor, "close", None)
            if close is not None and inspect.iscoroutinefunction(close):
                await close()
            await coordinator.store.close()

    summary = asyncio.run(_run())
    click.echo(
        f"{summary.processed} processed, {summary.skipped} skipped, {summary.failed} failed"
        + (" (interrupted)" if summary.interrupted else "")
    )
    if summary.fatal:
        click.echo(f"✗ Error: {summary.error}", err=True)
    sys.exit(summary.exit_code)


def _monitor_view(service: MonitorService):
    if service.latest is None:
        return Text(f"Waiting for fleet data... {service.last_error or ''}", style="yellow")
    view = render_snapshot(service.latest)
    if service.last_error:
        return Group(view, Text(f"Error fetching fleet stats: {service.last_error}", style="red"))
    return view


@main.command()
@click.option("--refresh", default=lambda: settings.MONITOR_REFRESH_SECONDS, type=click.FloatRange(min=0.1),
              show_default=str(settings.MONITOR_REFRESH_SECONDS), help="Seconds between polls")
@click.option("--inactive-after", default=lambda: settings.INACTIVE_THRESHOLD_SECONDS, type=click.FloatRange(min=0),
              show_default=str(settings.INACTIVE_THRESHOLD_SECONDS), help="Seconds without a heartbeat before a worker shows as inactive")
@click.option("--once", is_flag=True, help="Print one snapshot and exit")
@click.pass_obj
def monitor(obj, refresh, inactive_after, once):
    """Live view of workers, their progress and the items in flight."""
    console = Console()

    async def _run():
        coordinator = _build_coordinator(obj["store_url"], obj["stage"])
        service = MonitorService(coordinator, interval=refresh, inactive_threshold=inactive_after)
        try:
            await coordinator.ping()
            await service.tick()
            if once:
                console.print(_monitor_view(service))
                return
            with Live(_monitor_view(service), console=console, refresh_per_second=4) as live:
                while True:
                    await asyncio.sleep(refresh)
                    await service.tick()
                    live.update(_monitor_view(service))
        finally:
            await coordinator.store.close()

    try:
        asyncio.run(_run())
    except StoreConnectivityError as e:
        click.echo(f"✗ Lease store unreachable: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("Monitor stopped.")


@main.command()
@click.argument("item_id")
@click.option("--json", "as_json", is_flag=True, help="Print the raw lease/completion records")
@click.pass_obj
def status(obj, item_id, as_json):
    """Show whether ITEM_ID is leased and/or completed."""

    async def _run():
        coordinator = _build_coordinator(obj["store_url"], obj["stage"])
        try:
            item = await coordinator.status(item_id)
            lease = await coordinator.get_lease(item_id) if item.is_leased else None
            completion = await coordinator.get_completion(item_id) if item.is_completed else None
            return item, lease, completion
        finally:
            await coordinator.store.close()

    try:
        item, lease, completion = asyncio.run(_run())
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="ITEM_ID")
    except StoreError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({
            "item_id": item.item_id,
            "is_leased": item.is_leased,
            "is_completed": item.is_completed,
            "lease": json.loads(lease.to_json()) if lease else None,
            "completion": json.loads(completion.to_json()) if completion else None,
        }, indent=2))
        return

    click.echo(f"{item.item_id}: leased={'yes' if item.is_leased else 'no'} completed={'yes' if item.is_completed else 'no'}")
    if lease:
        click.echo(f"  held by {lease.holder_id}, expires at {lease.expires_at:.0f}")
    if completion:
        click.echo(f"  completed by {completion.completed_by} at {completion.completed_at:.0f}")


@main.command()
@click.option("--leases/--no-leases", default=True, help="Delete lease records (default: on)")
@click.option("--completions", is_flag=True, help="Also delete completion markers (all items become eligible again)")
@click.option("--heartbeats", is_flag=True, help="Also delete worker heartbeat records")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def sweep(obj, leases, completions, heartbeats, yes):
    """Delete coordination records of the current stage.

    Only run this while no workers are active: deleting a live lease lets a
    second worker claim the same item.
    """
    if not (leases or completions or heartbeats):
        raise click.UsageError("Nothing to sweep")
    if not yes:
        kinds = ", ".join(k for k, on in (("leases", leases), ("completions", completions), ("heartbeats", heartbeats)) if on)
        click.confirm(f"Delete all {kinds} in stage '{obj['stage']}'?", abort=True)

    async def _run():
        coordinator = _build_coordinator(obj["store_url"], obj["stage"])
        try:
            return await coordinator.sweep(leases=leases, completions=completions, heartbeats=heartbeats)
        finally:
            await coordinator.store.close()

    try:
        deleted = asyncio.run(_run())
    except StoreError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Deleted {deleted} keys")


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
@click.pass_obj
def serve(obj, host, port):
    """Run the HTTP API: fleet snapshot, item status, sweep and /metrics."""
    import uvicorn
    from fleet.main import create_app

    store = create_store(obj["store_url"], settings.STORE_CONNECT_TIMEOUT_SECONDS)
    uvicorn.run(create_app(store=store, stage=obj["stage"]), host=host, port=port)


if __name__ == "__main__":
    main()
