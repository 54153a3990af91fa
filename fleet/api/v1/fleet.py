from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from fleet.api.deps import CoordinatorDep, MonitorDep
from fleet.domain.errors import StoreError
from fleet.monitor.snapshot import collect_snapshot

router = APIRouter()

class ItemStatusResponse(BaseModel):
    item_id: str
    is_leased: bool
    is_completed: bool

class WorkerResponse(BaseModel):
    worker_id: str
    is_active: bool
    state: Optional[str] = None
    current_item: Optional[str] = None
    processed_count: Optional[int] = None
    failed_count: Optional[int] = None
    last_active_ago: Optional[float] = None
    uptime: Optional[float] = None

class FleetResponse(BaseModel):
    stage: str
    taken_at: float
    active_workers: int
    leased_count: int
    completed_count: int
    workers: list[WorkerResponse]
    in_flight: list[dict[str, Any]]

@router.get("/fleet", response_model=FleetResponse)
async def get_fleet(coordinator: CoordinatorDep, monitor: MonitorDep):
    snapshot = monitor.latest
    if snapshot is None:
        # Poller has not ticked yet (or every tick failed so far)
        try:
            snapshot = await collect_snapshot(coordinator, inactive_threshold=monitor.inactive_threshold)
        except StoreError as e:
            raise HTTPException(status_code=503, detail=str(e))
    return snapshot.to_dict()

@router.get("/items/{item_id}", response_model=ItemStatusResponse)
async def get_item_status(item_id: str, coordinator: CoordinatorDep):
    try:
        status = await coordinator.status(item_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return ItemStatusResponse(item_id=status.item_id, is_leased=status.is_leased, is_completed=status.is_completed)
