from io import StringIO

from prometheus_client import REGISTRY
from rich.console import Console

from fleet.coordinator import Coordinator
from fleet.domain.errors import StoreConnectivityError
from fleet.domain.models import WorkerHeartbeat
from fleet.domain.states import WorkerState
from fleet.monitor.render import format_duration, render_snapshot
from fleet.monitor.service import MonitorService
from fleet.monitor.snapshot import FleetSnapshot, WorkerView, collect_snapshot, is_active


def render_to_text(renderable) -> str:
    console = Console(file=StringIO(), width=160, color_system=None)
    console.print(renderable)
    return console.file.getvalue()


def test_is_active_threshold_is_exclusive():
    assert is_active(last_active=1000.0, now=1089.0, inactive_threshold=90.0)
    assert not is_active(last_active=1000.0, now=1090.0, inactive_threshold=90.0)
    assert not is_active(last_active=None, now=1000.0, inactive_threshold=90.0)


def test_format_duration():
    assert format_duration(None) == "-"
    assert format_duration(42.7) == "42s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(3 * 3600 + 65) == "3h 1m"
    assert format_duration(-5) == "0s"


async def test_collect_snapshot(coordinator, clock):
    await coordinator.heartbeat("worker-a", WorkerHeartbeat(
        worker_id="worker-a", started_at=clock() - 600, processed_count=12, failed_count=1,
        current_item="shopify", state=WorkerState.RUNNING,
    ))
    clock.advance(100)
    await coordinator.heartbeat("worker-b", WorkerHeartbeat(worker_id="worker-b", started_at=clock()))
    await coordinator.claim("shopify", "worker-a")
    await coordinator.complete("slack", "worker-b")
    clock.advance(10)

    snapshot = await collect_snapshot(coordinator, inactive_threshold=90.0)

    assert snapshot.stage == "app"
    assert snapshot.taken_at == clock()
    assert [w.worker_id for w in snapshot.workers] == ["worker-a", "worker-b"]
    worker_a, worker_b = snapshot.workers
    assert not worker_a.is_active
    assert worker_a.last_active_ago == 110
    assert worker_a.uptime == 710
    assert worker_b.is_active
    assert snapshot.active_workers == 1
    assert snapshot.leased_count == 1
    assert snapshot.completed_count == 1
    assert [(f.item_id, f.holder_id, f.running_for) for f in snapshot.in_flight] == [("shopify", "worker-a", 10)]
    assert snapshot.failed_total == 1


async def test_snapshot_does_not_mutate_the_store(coordinator, memory_store):
    await coordinator.claim("shopify", "worker-a")
    before = dict(memory_store._data)
    await collect_snapshot(coordinator)
    assert memory_store._data == before


def test_render_shows_placeholders_for_missing_fields():
    snapshot = FleetSnapshot(
        stage="app",
        taken_at=1_700_000_000.0,
        workers=[
            WorkerView(worker_id="bare-worker", is_active=False),
            WorkerView(worker_id="busy-worker", is_active=True, state="running", current_item="shopify",
                       processed_count=0, failed_count=2, last_active_ago=3, uptime=4000),
        ],
        leased_count=1,
        completed_count=5,
    )
    text = render_to_text(render_snapshot(snapshot))

    bare_row = next(line for line in text.splitlines() if "bare-worker" in line)
    assert "○" in bare_row
    assert bare_row.count("-") >= 6
    busy_row = next(line for line in text.splitlines() if "busy-worker" in line)
    assert "●" in busy_row and "shopify" in busy_row and "3s ago" in busy_row and "1h 6m" in busy_row
    assert "Active Workers: 1/2" in text
    assert "Total Items Completed: 5" in text


async def test_monitor_service_keeps_last_snapshot_on_error(coordinator):
    service = MonitorService(coordinator, interval=60)
    await coordinator.heartbeat("worker-a", WorkerHeartbeat(worker_id="worker-a"))

    first = await service.tick()
    assert first is not None and service.latest is first
    assert REGISTRY.get_sample_value("fleet_workers", {"stage": "app"}) == 1

    async def down():
        raise StoreConnectivityError("Connection refused")
    coordinator.list_heartbeats = down

    assert await service.tick() is None
    assert service.latest is first
    assert "Connection refused" in service.last_error


async def test_monitor_service_drops_series_for_gone_workers(memory_store, clock):
    coordinator = Coordinator(memory_store, stage="gone", clock=clock)
    service = MonitorService(coordinator)
    await coordinator.heartbeat("worker-x", WorkerHeartbeat(worker_id="worker-x", processed_count=3))
    await service.tick()
    labels = {"stage": "gone", "worker_id": "worker-x"}
    assert REGISTRY.get_sample_value("fleet_worker_processed_items", labels) == 3

    clock.advance(coordinator.heartbeat_ttl)
    await service.tick()
    assert REGISTRY.get_sample_value("fleet_worker_processed_items", labels) is None
