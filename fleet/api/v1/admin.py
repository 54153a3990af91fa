from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from fleet.api.deps import CoordinatorDep
from fleet.domain.errors import StoreError

router = APIRouter()

class SweepRequest(BaseModel):
    leases: bool = True
    completions: bool = False
    heartbeats: bool = False

@router.post("/sweep")
async def trigger_sweep(payload: SweepRequest, coordinator: CoordinatorDep):
    try:
        deleted = await coordinator.sweep(
            leases=payload.leases,
            completions=payload.completions,
            heartbeats=payload.heartbeats,
        )
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"deleted": deleted}
