"""
Coordinator: the atomic-operations API every pipeline stage shares.

Stages (scrape, relevancy, classification, ...) differ only in their item
processor and their key namespace; they all claim, complete, release and
heartbeat through this one type. Nothing here keeps local state beyond
configuration, every call is a round trip to the Lease Store.
"""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Optional

from fleet.domain.errors import CorruptRecordError
from fleet.domain.keys import KeySpace, normalize_item_id
from fleet.domain.models import Lease, CompletionMarker, WorkerHeartbeat, ItemStatus, FleetCounts
from fleet.domain.states import ClaimResult
from fleet.store.base import LeaseStore, SetOp, DeleteOp

logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 100


class Coordinator:

    def __init__(
        self,
        store: LeaseStore,
        stage: str = "app",
        lease_ttl: int = 3600,
        heartbeat_ttl: int = 120,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.keys = KeySpace(stage)
        self.lease_ttl = lease_ttl
        self.heartbeat_ttl = heartbeat_ttl
        self.clock = clock

    @property
    def stage(self) -> str:
        return self.keys.stage

    async def ping(self) -> None:
        await self.store.ping()

    async def status(self, item_id: str) -> ItemStatus:
        """
        Two independent existence checks. The item may transition between
        them, so the result is a snapshot and never a lock.
        """
        normalized = normalize_item_id(item_id)
        is_leased, is_completed = await asyncio.gather(
            self.store.exists(self.keys.lease(normalized)),
            self.store.exists(self.keys.completed(normalized)),
        )
        return ItemStatus(item_id=normalized, is_leased=is_leased, is_completed=is_completed)

    async def claim(self, item_id: str, holder_id: str, ttl: Optional[int] = None) -> ClaimResult:
        """
        Atomically acquires the lease for item_id.
        One conditional write: succeeds only if no live lease and no
        completion marker exist for the item.
        """
        normalized = normalize_item_id(item_id)
        ttl = ttl if ttl is not None else self.lease_ttl
        lease = Lease(item_id=normalized, holder_id=holder_id, acquired_at=self.clock(), ttl=ttl)

        acquired = await self.store.set_if_absent(
            self.keys.lease(normalized),
            lease.to_json(),
            ttl,
            guard_keys=[self.keys.completed(normalized)],
        )
        if acquired:
            logger.debug(f"{holder_id} acquired lease on {normalized} (ttl={ttl}s)")
            return ClaimResult.ACQUIRED
        return ClaimResult.CONFLICT

    async def complete(self, item_id: str, holder_id: str, summary: Optional[dict[str, Any]] = None) -> bool:
        """
        Writes the completion marker and removes the lease in one transaction.
        The marker is write-once: completing an already completed item keeps
        the first marker and still clears any lease.

        Returns:
            True iff this call's marker was the one written; concurrent
            completers of one item get exactly one True.
        """
        normalized = normalize_item_id(item_id)
        completed_key = self.keys.completed(normalized)
        marker = CompletionMarker(
            item_id=normalized,
            completed_by=holder_id,
            completed_at=self.clock(),
            result_summary=summary or {},
        )

        written, _ = await self.store.apply([
            SetOp(completed_key, marker.to_json(), only_if_absent=True),
            DeleteOp(self.keys.lease(normalized)),
        ])
        if not written:
            logger.info(f"{normalized} was already completed, kept existing marker")
        return written

    async def release(self, item_id: str) -> bool:
        """Best-effort lease deletion so another worker need not wait out the ttl."""
        removed = await self.store.delete(self.keys.lease(normalize_item_id(item_id)))
        return removed > 0

    async def heartbeat(self, worker_id: str, snapshot: WorkerHeartbeat) -> WorkerHeartbeat:
        """Upserts the worker's liveness record; each call refreshes the ttl."""
        record = replace(snapshot, worker_id=worker_id, last_active=self.clock())
        await self.store.set(self.keys.heartbeat(worker_id), record.to_json(), ttl=self.heartbeat_ttl)
        return record

    async def get_lease(self, item_id: str) -> Optional[Lease]:
        key = self.keys.lease(item_id)
        raw = await self.store.get(key)
        return Lease.from_json(key, raw) if raw is not None else None

    async def get_completion(self, item_id: str) -> Optional[CompletionMarker]:
        key = self.keys.completed(item_id)
        raw = await self.store.get(key)
        return CompletionMarker.from_json(key, raw) if raw is not None else None

    async def _read_prefix(self, prefix: str) -> list[tuple[str, str]]:
        keys = [key async for key in self.store.scan_prefix(prefix)]
        values = await self.store.get_many(keys)
        # A key may expire between the scan and the read
        return [(k, v) for k, v in zip(keys, values) if v is not None]

    async def list_heartbeats(self) -> list[WorkerHeartbeat]:
        prefix = self.keys.heartbeat_prefix
        heartbeats = []
        for key, raw in await self._read_prefix(prefix):
            worker_id = self.keys.suffix(key, prefix)
            try:
                heartbeats.append(WorkerHeartbeat.from_json(key, raw, worker_id=worker_id))
            except CorruptRecordError as e:
                logger.warning(str(e))
                heartbeats.append(WorkerHeartbeat(worker_id=worker_id))
        return sorted(heartbeats, key=lambda hb: hb.worker_id)

    async def list_leases(self) -> list[Lease]:
        leases = []
        for key, raw in await self._read_prefix(self.keys.lease_prefix):
            try:
                leases.append(Lease.from_json(key, raw))
            except CorruptRecordError as e:
                logger.warning(str(e))
        return sorted(leases, key=lambda lease: lease.acquired_at)

    async def counts(self) -> FleetCounts:
        leased, completed = await asyncio.gather(
            self.store.count_prefix(self.keys.lease_prefix),
            self.store.count_prefix(self.keys.completed_prefix),
        )
        return FleetCounts(leased=leased, completed=completed)

    async def sweep(self, leases: bool = True, completions: bool = False, heartbeats: bool = False) -> int:
        """
        Maintenance reset: bulk-deletes this stage's keys by prefix.
        Returns number of keys deleted.
        """
        prefixes = []
        if leases:
            prefixes.append(self.keys.lease_prefix)
        if completions:
            prefixes.append(self.keys.completed_prefix)
        if heartbeats:
            prefixes.append(self.keys.heartbeat_prefix)

        total = 0
        for prefix in prefixes:
            keys = [key async for key in self.store.scan_prefix(prefix)]
            for i in range(0, len(keys), SWEEP_BATCH_SIZE):
                batch = keys[i:i + SWEEP_BATCH_SIZE]
                total += await self.store.delete(*batch)
                logger.info(f"Deleted batch of {len(batch)} keys under {prefix}*")
        logger.info(f"Sweep complete. Total keys deleted: {total}")
        return total
