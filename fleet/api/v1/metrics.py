from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions (refreshed by the monitor poller on every tick)
FLEET_WORKERS = Gauge('fleet_workers', 'Workers with a live heartbeat record', ['stage'])
FLEET_WORKERS_ACTIVE = Gauge('fleet_workers_active', 'Workers whose last heartbeat is within the inactivity threshold', ['stage'])
ITEMS_LEASED = Gauge('fleet_items_leased', 'Items currently under a live lease', ['stage'])
ITEMS_COMPLETED = Gauge('fleet_items_completed', 'Items with a completion marker', ['stage'])

WORKER_PROCESSED = Gauge('fleet_worker_processed_items', 'Items completed by a worker since it started', ['stage', 'worker_id'])
WORKER_FAILED = Gauge('fleet_worker_failed_items', 'Items a worker gave up on since it started', ['stage', 'worker_id'])

MONITOR_POLL_ERRORS = Counter('fleet_monitor_poll_errors_total', 'Monitor ticks that could not read the lease store', ['stage'])

_known_workers: dict[str, set[str]] = {}


def observe_snapshot(snapshot) -> None:
    stage = snapshot.stage
    FLEET_WORKERS.labels(stage=stage).set(len(snapshot.workers))
    FLEET_WORKERS_ACTIVE.labels(stage=stage).set(snapshot.active_workers)
    ITEMS_LEASED.labels(stage=stage).set(snapshot.leased_count)
    ITEMS_COMPLETED.labels(stage=stage).set(snapshot.completed_count)

    current = set()
    for worker in snapshot.workers:
        current.add(worker.worker_id)
        WORKER_PROCESSED.labels(stage=stage, worker_id=worker.worker_id).set(worker.processed_count or 0)
        WORKER_FAILED.labels(stage=stage, worker_id=worker.worker_id).set(worker.failed_count or 0)

    # Heartbeat expired: drop the series instead of reporting a frozen value
    for gone in _known_workers.get(stage, set()) - current:
        WORKER_PROCESSED.remove(stage, gone)
        WORKER_FAILED.remove(stage, gone)
    _known_workers[stage] = current


@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
