#!/usr/bin/env python3
"""Races 20 independent store connections for one item against a live store (FLEET_STORE_URL)."""
import asyncio
import uuid

from fleet.coordinator import Coordinator
from fleet.domain.states import ClaimResult
from fleet.settings import settings
from fleet.store.factory import create_store

STAGE = "verify"

async def attempt_claim(item_id, worker_id):
    coordinator = Coordinator(create_store(settings.STORE_URL), stage=STAGE)
    try:
        result = await coordinator.claim(item_id, worker_id)
        return worker_id if result == ClaimResult.ACQUIRED else None
    finally:
        await coordinator.store.close()

async def verify_no_double_claim():
    item_id = f"concurrency-{uuid.uuid4()}"
    coordinator = Coordinator(create_store(settings.STORE_URL), stage=STAGE)
    await coordinator.ping()
    print(f"1. Racing for item {item_id}")

    # 2. Spawn 20 concurrent workers trying to claim
    print("2. Spawning 20 concurrent claim attempts...")
    results = await asyncio.gather(*[attempt_claim(item_id, f"worker-{i}") for i in range(20)])

    # 3. Analyze results
    winners = [r for r in results if r is not None]
    print(f"3. Results: {len(winners)} successful claims.")

    if len(winners) == 1:
        lease = await coordinator.get_lease(item_id)
        if lease is None or lease.holder_id != winners[0]:
            print(f"FAILURE: Lease holder {lease.holder_id if lease else None} does not match winner {winners[0]}")
        else:
            print("SUCCESS: Exactly one worker claimed the item.")
            print(f"   Winner: {winners[0]}")
    elif len(winners) == 0:
        print("FAILURE: No one claimed the item (unexpected).")
    else:
        print(f"FAILURE: {len(winners)} workers claimed the item! Double claim detected.")
        for w in winners:
            print(f"   - {w}")

    # 4. Completed items stay closed
    await coordinator.complete(item_id, winners[0] if winners else "verifier")
    late = await attempt_claim(item_id, "late-worker")
    print("4. Claim after completion: " + ("FAILURE, acquired" if late else "rejected as expected"))

    await coordinator.sweep(leases=True, completions=True)
    await coordinator.store.close()

if __name__ == "__main__":
    asyncio.run(verify_no_double_claim())
