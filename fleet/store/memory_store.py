import threading
import time
from typing import AsyncIterator, Callable, Iterable, Optional, Sequence

from fleet.store.base import LeaseStore, StoreOp, SetOp, DeleteOp


class MemoryLeaseStore(LeaseStore):
    """
    In-process store for tests and single-host dry runs.
    The clock is injectable so lease expiry can be exercised deterministically.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._data: dict[str, tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self.clock() + ttl if ttl is not None else None

    async def ping(self) -> None:
        return None

    async def set_if_absent(self, key: str, value: str, ttl: int, guard_keys: Sequence[str] = ()) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            if any(self._live(guard) is not None for guard in guard_keys):
                return False
            self._data[key] = (value, self._expiry(ttl))
            return True

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl))

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    async def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._live(key) is not None:
                    removed += 1
                self._data.pop(key, None)
        return removed

    async def apply(self, ops: Iterable[StoreOp]) -> list[bool]:
        results = []
        with self._lock:
            for op in ops:
                if isinstance(op, SetOp):
                    if op.only_if_absent and self._live(op.key) is not None:
                        results.append(False)
                        continue
                    self._data[op.key] = (op.value, self._expiry(op.ttl))
                    results.append(True)
                elif isinstance(op, DeleteOp):
                    results.append(self._live(op.key) is not None)
                    self._data.pop(op.key, None)
                else:
                    raise TypeError(f"Unsupported store op: {op!r}")
        return results

    async def scan_prefix(self, prefix: str) -> AsyncIterator[str]:
        with self._lock:
            keys = [key for key in list(self._data) if key.startswith(prefix) and self._live(key) is not None]
        for key in keys:
            yield key

