#!/usr/bin/env python3
"""A worker 'crashes' holding a 2s lease; a second worker picks the item up once it expires."""
import asyncio
import uuid

from fleet.coordinator import Coordinator
from fleet.domain.states import ClaimResult
from fleet.settings import settings
from fleet.store.factory import create_store

async def verify_lease_expiry():
    item_id = f"crash-test-{uuid.uuid4()}"
    coordinator = Coordinator(create_store(settings.STORE_URL), stage="verify")
    await coordinator.ping()

    # 1. Worker A claims with a short lease
    print("1. Worker A claiming (ttl=2s)...")
    if await coordinator.claim(item_id, "worker-A", ttl=2) != ClaimResult.ACQUIRED:
        print("   ERROR: Failed to claim item for Worker A")
        return
    print(f"   Worker A holds {item_id}")

    # 2. Worker A crashes (simulated by doing absolutely nothing)
    print("2. Worker A 'crashes' (exits without completing or releasing)")
    result = await coordinator.claim(item_id, "worker-B")
    print(f"   Worker B claim while lease is live: {result}")

    # 3. Wait for lease to expire; no reaper involved
    print("3. Waiting 3s for lease to expire...")
    await asyncio.sleep(3)

    status = await coordinator.status(item_id)
    print(f"   Status: leased={status.is_leased} completed={status.is_completed}")

    # 4. Worker B claims and completes
    print("4. Worker B claiming...")
    if await coordinator.claim(item_id, "worker-B") == ClaimResult.ACQUIRED:
        await coordinator.complete(item_id, "worker-B", {"result": "recovered"})
        marker = await coordinator.get_completion(item_id)
        if marker and marker.completed_by == "worker-B":
            print("SUCCESS: Item recovered and completed.")
        else:
            print(f"FAILURE: Completion marker is {marker}")
    else:
        print("FAILURE: Worker B did not get the item.")

    await coordinator.sweep(leases=True, completions=True)
    await coordinator.store.close()

if __name__ == "__main__":
    asyncio.run(verify_lease_expiry())
