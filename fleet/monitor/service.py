import asyncio
import logging
from typing import Callable, Optional

from fleet.api.v1.metrics import MONITOR_POLL_ERRORS, observe_snapshot
from fleet.coordinator import Coordinator
from fleet.domain.errors import CoordinatorError
from fleet.monitor.snapshot import FleetSnapshot, collect_snapshot

logger = logging.getLogger(__name__)


class MonitorService:
    """
    Pull-based poller: every interval it reads heartbeats and lease/completion
    counts, keeps the latest snapshot and refreshes the Prometheus gauges.
    A failed tick keeps the previous snapshot.
    """

    def __init__(
        self,
        coordinator: Coordinator,
        interval: float = 5.0,
        inactive_threshold: float = 90.0,
        on_snapshot: Optional[Callable[[FleetSnapshot], None]] = None
    ):
        self.coordinator = coordinator
        self.interval = interval
        self.inactive_threshold = inactive_threshold
        self.on_snapshot = on_snapshot
        self.latest: Optional[FleetSnapshot] = None
        self.last_error: Optional[str] = None
        self._running = False
        self._task = None

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Monitor service started.")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Monitor service stopped.")

    async def tick(self) -> Optional[FleetSnapshot]:
        try:
            snapshot = await collect_snapshot(self.coordinator, inactive_threshold=self.inactive_threshold)
        except CoordinatorError as e:
            logger.error(f"Error fetching fleet stats: {e}")
            self.last_error = str(e)
            MONITOR_POLL_ERRORS.labels(stage=self.coordinator.stage).inc()
            return None

        self.latest = snapshot
        self.last_error = None
        observe_snapshot(snapshot)
        if self.on_snapshot:
            self.on_snapshot(snapshot)
        return snapshot

    async def _loop(self):
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error in monitor ticker: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
