import asyncio
import logging
import signal
import time
from typing import Callable, Iterable, Optional

from fleet.coordinator import Coordinator
from fleet.domain.errors import CoordinatorError, ProcessingError, StoreConnectivityError
from fleet.domain.keys import normalize_item_id
from fleet.domain.retry import calculate_backoff
from fleet.domain.states import ClaimResult, ItemOutcome, WorkerState
from fleet_worker.context import RunSummary, WorkerContext
from fleet_worker.local_cache import LocalCompletionCache
from fleet_worker.processor import ItemProcessor

logger = logging.getLogger(__name__)


class WorkerRunner:
    """
    One worker process: pulls item ids from a backlog and drives each through
    local-cache check -> remote status -> claim -> process -> complete, with
    release and bounded retry on processing failure.
    """

    def __init__(
        self,
        coordinator: Coordinator,
        processor: ItemProcessor,
        worker_id: str,
        local_cache: Optional[LocalCompletionCache] = None,
        max_retries: int = 3,
        heartbeat_interval: float = 30.0,
        item_delay: float = 0.0,
        retry_base_delay: float = 3.0,
        retry_max_delay: float = 60.0,
        handle_signals: bool = False,
        clock: Callable[[], float] = time.time
    ):
        self.coordinator = coordinator
        self.processor = processor
        self.local_cache = local_cache
        self.max_retries = max_retries
        self.heartbeat_interval = heartbeat_interval
        self.item_delay = item_delay
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.handle_signals = handle_signals
        self.context = WorkerContext(worker_id=worker_id, clock=clock)
        self.running = False
        self._stop_requested = False
        self._shutdown_event = asyncio.Event()
        self._current_task: Optional[asyncio.Task] = None

    @property
    def worker_id(self) -> str:
        return self.context.worker_id

    async def run(self, backlog: Iterable[str]) -> RunSummary:
        summary = RunSummary()

        try:
            await self.coordinator.ping()
        except StoreConnectivityError as e:
            logger.error(f"Lease store connection failed. Exiting: {e}")
            summary.fatal = True
            summary.error = str(e)
            return summary

        self.running = True
        self._stop_requested = False
        self._shutdown_event.clear()
        self.context.state = WorkerState.RUNNING
        self._install_signal_handlers()
        logger.info(f"Worker {self.worker_id} started (stage: {self.coordinator.stage})")

        await self._send_heartbeat()
        heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        try:
            for item_id in backlog:
                if not self.running:
                    break

                self._current_task = asyncio.create_task(self.process_item(item_id))
                try:
                    outcome = await self._current_task
                except asyncio.CancelledError:
                    if not self._stop_requested:
                        raise
                    # stop() cancelled the in-flight item; its lease is left to expire
                    logger.warning(f"Interrupted while handling {item_id}, lease left to expire")
                    break
                except Exception as e:
                    logger.exception(f"Unexpected error handling {item_id}: {e}")
                    outcome = ItemOutcome.ERRORED
                finally:
                    self._current_task = None

                summary.record(outcome)
                self.context.record(outcome)

                if self.item_delay and self.running:
                    await self._wait_for_shutdown(self.item_delay)
        finally:
            self.running = False
            summary.interrupted = self._stop_requested
            heartbeat_task.cancel()
            try:
                await heartbeat_task
            except asyncio.CancelledError:
                pass

            self.context.state = WorkerState.STOPPED
            self.context.current_item = None
            await self._send_heartbeat()
            self._remove_signal_handlers()
            logger.info(
                f"Worker {self.worker_id} stopped: {summary.processed} processed, "
                f"{summary.skipped} skipped, {summary.failed} failed"
            )

        return summary

    def stop(self):
        if not self.running:
            return
        logger.info("Shutdown signal received")
        self._stop_requested = True
        self.running = False
        self._shutdown_event.set()
        if self._current_task and not self._current_task.done():
            self._current_task.cancel()

    async def process_item(self, item_id: str) -> ItemOutcome:
        """
        Runs one item to a terminal outcome. Store and record errors are
        caught here so one bad item never aborts the loop.
        """
        try:
            normalized = normalize_item_id(item_id)
        except ValueError as e:
            logger.error(f"Rejected backlog entry {item_id!r}: {e}")
            return ItemOutcome.ERRORED

        self.context.current_item = normalized
        try:
            return await self._process(normalized)
        except StoreConnectivityError as e:
            logger.error(f"Lease store unreachable while handling {normalized}, moving on: {e}")
            return ItemOutcome.ERRORED
        except CoordinatorError as e:
            logger.error(f"Coordinator error while handling {normalized}: {e}")
            return ItemOutcome.ERRORED
        finally:
            self.context.current_item = None

    async def _process(self, item_id: str) -> ItemOutcome:
        if self.local_cache is not None and self.local_cache.is_complete(item_id):
            logger.info(f"Skipping {item_id} - found in local cache")
            return ItemOutcome.SKIPPED_CACHED

        status = await self.coordinator.status(item_id)
        if status.is_completed:
            if self.local_cache is not None:
                self.local_cache.mark_complete(item_id)
            logger.info(f"Skipping {item_id} - already completed")
            return ItemOutcome.SKIPPED_COMPLETED
        if status.is_leased:
            logger.info(f"Skipping {item_id} - being processed by another worker")
            return ItemOutcome.SKIPPED_LEASED

        attempts = 0
        while True:
            try:
                claim = await self.coordinator.claim(item_id, self.worker_id)
            except CoordinatorError:
                # The write may have landed even though the reply was lost
                await self._release_if_held(item_id)
                raise
            if claim == ClaimResult.CONFLICT:
                logger.info(f"Skipping {item_id} - claimed by another worker")
                return ItemOutcome.SKIPPED_CONFLICT

            attempts += 1
            logger.info(f"Processing {item_id}" + (f" (attempt {attempts})" if attempts > 1 else ""))
            error = await self._attempt(item_id)
            if error is None:
                logger.info(f"Completed {item_id}")
                return ItemOutcome.DONE

            if attempts > self.max_retries:
                # Released, so a later run or another worker can try again
                logger.error(f"{error}; giving up after {attempts} attempts, lease released")
                return ItemOutcome.FAILED

            delay = calculate_backoff(attempts, self.retry_base_delay, self.retry_max_delay)
            logger.warning(f"{error}; retry {attempts}/{self.max_retries} in {delay:.1f}s")
            await self._wait_for_shutdown(delay)

    async def _attempt(self, item_id: str) -> Optional[ProcessingError]:
        """One PROCESSING pass under a held lease. Returns None once completed."""
        try:
            result = await self.processor(item_id)
        except Exception as e:
            error = ProcessingError(item_id, f"{type(e).__name__}: {e}")
        else:
            if result is None or not result.ok:
                reason = (result.error if result is not None else None) or "processor reported failure"
                error = ProcessingError(item_id, reason)
            else:
                try:
                    await self.coordinator.complete(item_id, self.worker_id, result.summary)
                except CoordinatorError as e:
                    error = ProcessingError(item_id, f"completion failed: {e}")
                else:
                    if self.local_cache is not None:
                        self.local_cache.mark_complete(item_id)
                    return None

        await self._release(item_id)
        return error

    async def _release(self, item_id: str) -> None:
        try:
            await self.coordinator.release(item_id)
        except CoordinatorError as e:
            logger.warning(f"Could not release lease on {item_id}, it will expire on its own: {e}")

    async def _release_if_held(self, item_id: str) -> None:
        """Releases after a failed claim, but only a lease this worker wrote."""
        try:
            lease = await self.coordinator.get_lease(item_id)
        except CoordinatorError as e:
            logger.warning(f"Could not check lease on {item_id} after failed claim, it will expire on its own: {e}")
            return
        if lease is not None and lease.holder_id == self.worker_id:
            logger.info(f"Releasing lease on {item_id} left by a failed claim")
            await self._release(item_id)

    async def _send_heartbeat(self) -> bool:
        try:
            await self.coordinator.heartbeat(self.worker_id, self.context.snapshot())
            return True
        except CoordinatorError as e:
            logger.warning(f"Failed to update worker status: {e}")
            return False

    async def _heartbeat_loop(self):
        try:
            while self.running:
                await self._wait_for_shutdown(self.heartbeat_interval)
                if not self.running:
                    break
                logger.debug(f"Sending heartbeat for {self.worker_id}")
                await self._send_heartbeat()
        except asyncio.CancelledError:
            pass

    async def _wait_for_shutdown(self, timeout: float):
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    def _install_signal_handlers(self):
        if not self.handle_signals:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # Windows, or not on the main thread
                pass

    def _remove_signal_handlers(self):
        if not self.handle_signals:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
