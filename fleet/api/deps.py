from typing import Annotated

from fastapi import Depends, Request

from fleet.coordinator import Coordinator
from fleet.monitor.service import MonitorService


def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator

def get_monitor(request: Request) -> MonitorService:
    return request.app.state.monitor

# Dependencies for the shared coordinator / poller built in the app lifespan
CoordinatorDep = Annotated[Coordinator, Depends(get_coordinator)]
MonitorDep = Annotated[MonitorService, Depends(get_monitor)]
