import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fleet.settings import settings
from fleet.coordinator import Coordinator
from fleet.domain.errors import StoreConnectivityError
from fleet.monitor.service import MonitorService
from fleet.store.base import LeaseStore
from fleet.store.factory import create_store
from fleet.api.v1.fleet import router as fleet_router
from fleet.api.v1.admin import router as admin_router
from fleet.api.v1.metrics import router as metrics_router

logger = logging.getLogger("uvicorn")


def create_app(
    store: Optional[LeaseStore] = None,
    coordinator: Optional[Coordinator] = None,
    stage: Optional[str] = None
) -> FastAPI:
    """
    A coordinator passed in is left open on shutdown; a store passed in (or
    built from FLEET_STORE_URL) is closed with the app.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        owns_store = coordinator is None
        active = coordinator
        if active is None:
            backend = store or create_store(settings.STORE_URL, settings.STORE_CONNECT_TIMEOUT_SECONDS)
            active = Coordinator(
                backend,
                stage=stage or settings.STAGE,
                lease_ttl=settings.LEASE_TTL_SECONDS,
                heartbeat_ttl=settings.HEARTBEAT_TTL_SECONDS,
            )

        # Unreachable store is fatal at startup
        await active.ping()
        logger.info(f"Lease store reachable, serving stage '{active.stage}'")

        monitor = MonitorService(
            active,
            interval=settings.MONITOR_REFRESH_SECONDS,
            inactive_threshold=settings.INACTIVE_THRESHOLD_SECONDS,
        )
        app.state.coordinator = active
        app.state.monitor = monitor
        await monitor.start()

        yield

        # Shutdown
        await monitor.stop()
        if owns_store:
            await active.store.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan
    )

    app.include_router(fleet_router, prefix="/api/v1", tags=["fleet"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
    app.include_router(metrics_router, tags=["metrics"])

    @app.exception_handler(StoreConnectivityError)
    async def store_unavailable(request: Request, exc: StoreConnectivityError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
