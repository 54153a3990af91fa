from datetime import datetime
from typing import Optional

from rich.console import Group
from rich.table import Table
from rich.text import Text

from fleet.monitor.snapshot import FleetSnapshot

PLACEHOLDER = "-"


def format_duration(seconds: Optional[float]) -> str:
    """Format duration in a human-readable way."""
    if seconds is None:
        return PLACEHOLDER
    seconds = max(0, int(seconds))
    minutes, hours = seconds // 60, seconds // 3600
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def _cell(value) -> str:
    return PLACEHOLDER if value is None or value == "" else str(value)


def render_snapshot(snapshot: FleetSnapshot, title: str = "Fleet Monitor") -> Group:
    taken = datetime.fromtimestamp(snapshot.taken_at).strftime("%Y-%m-%d %H:%M:%S")
    header = Text(f"{title} [{snapshot.stage}] {taken}", style="bold cyan")

    table = Table(header_style="yellow")
    for column in ("Worker", "Status", "State", "Current Item", "Processed", "Failed", "Last Active", "Uptime"):
        table.add_column(column)

    for worker in snapshot.workers:
        status = Text("●", style="green") if worker.is_active else Text("○", style="red")
        last_active = format_duration(worker.last_active_ago)
        table.add_row(
            worker.worker_id,
            status,
            _cell(worker.state),
            _cell(worker.current_item),
            _cell(worker.processed_count),
            _cell(worker.failed_count),
            last_active if last_active == PLACEHOLDER else f"{last_active} ago",
            format_duration(worker.uptime),
        )

    parts = [
        header,
        table,
        Text("Overall Progress:"),
        Text(f"Active Workers: {snapshot.active_workers}/{len(snapshot.workers)}", style="green"),
        Text(f"Total Items Completed: {snapshot.completed_count}", style="cyan"),
        Text(f"Currently Processing: {snapshot.leased_count}", style="yellow"),
    ]

    if snapshot.in_flight:
        parts.append(Text("Currently Processing Items:"))
        for lease in snapshot.in_flight:
            parts.append(Text(
                f"- {lease.item_id} (by {lease.holder_id}, running for {format_duration(lease.running_for)})",
                style="bright_black",
            ))

    return Group(*parts)
