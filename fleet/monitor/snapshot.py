"""
Read-only fleet snapshot.

Everything here is derived from records the workers wrote; the monitor never
deletes or mutates state.
"""

import asyncio
from dataclasses import dataclass, field, asdict
from typing import Any, Optional

from fleet.coordinator import Coordinator
from fleet.domain.models import WorkerHeartbeat


def is_active(last_active: Optional[float], now: float, inactive_threshold: float) -> bool:
    """A worker is active iff now - last_active < inactive_threshold."""
    if last_active is None:
        return False
    return now - last_active < inactive_threshold


@dataclass
class WorkerView:
    worker_id: str
    is_active: bool
    state: Optional[str] = None
    current_item: Optional[str] = None
    processed_count: Optional[int] = None
    failed_count: Optional[int] = None
    last_active_ago: Optional[float] = None
    uptime: Optional[float] = None

    @classmethod
    def from_heartbeat(cls, hb: WorkerHeartbeat, now: float, inactive_threshold: float) -> "WorkerView":
        return cls(
            worker_id=hb.worker_id,
            is_active=is_active(hb.last_active, now, inactive_threshold),
            state=str(hb.state) if hb.state else None,
            current_item=hb.current_item,
            processed_count=hb.processed_count,
            failed_count=hb.failed_count,
            last_active_ago=now - hb.last_active if hb.last_active is not None else None,
            uptime=now - hb.started_at if hb.started_at is not None else None,
        )


@dataclass
class InFlightView:
    item_id: str
    holder_id: str
    running_for: float


@dataclass
class FleetSnapshot:
    stage: str
    taken_at: float
    workers: list[WorkerView] = field(default_factory=list)
    leased_count: int = 0
    completed_count: int = 0
    in_flight: list[InFlightView] = field(default_factory=list)

    @property
    def active_workers(self) -> int:
        return sum(1 for w in self.workers if w.is_active)

    @property
    def failed_total(self) -> int:
        return sum(w.failed_count or 0 for w in self.workers)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["active_workers"] = self.active_workers
        return data


async def collect_snapshot(
    coordinator: Coordinator,
    now: Optional[float] = None,
    inactive_threshold: float = 90.0,
    include_in_flight: bool = True
) -> FleetSnapshot:
    heartbeats, counts, leases = await asyncio.gather(
        coordinator.list_heartbeats(),
        coordinator.counts(),
        coordinator.list_leases() if include_in_flight else asyncio.sleep(0, result=[]),
    )
    now = coordinator.clock() if now is None else now

    return FleetSnapshot(
        stage=coordinator.stage,
        taken_at=now,
        workers=[WorkerView.from_heartbeat(hb, now, inactive_threshold) for hb in heartbeats],
        leased_count=counts.leased,
        completed_count=counts.completed,
        in_flight=[
            InFlightView(item_id=l.item_id, holder_id=l.holder_id, running_for=max(0.0, now - l.acquired_at))
            for l in leases
        ],
    )
