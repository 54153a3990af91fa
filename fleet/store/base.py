"""
Lease Store interface.

The coordinator only needs five wire-level capabilities from the shared store:
conditional set with expiry, existence check, deletion, a multi-operation
atomic transaction and prefix enumeration. Every backend implements them
with the same semantics; expired values are invisible to every read.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Iterable, Optional, Sequence, Union


@dataclass(frozen=True)
class SetOp:
    key: str
    value: str
    ttl: Optional[int] = None
    only_if_absent: bool = False

@dataclass(frozen=True)
class DeleteOp:
    key: str

StoreOp = Union[SetOp, DeleteOp]


class LeaseStore(ABC):
    """Shared key/value store holding leases, completion markers and heartbeats."""

    @abstractmethod
    async def ping(self) -> None:
        """Raises StoreConnectivityError if the store cannot be reached."""

    @abstractmethod
    async def set_if_absent(
        self,
        key: str,
        value: str,
        ttl: int,
        guard_keys: Sequence[str] = ()
    ) -> bool:
        """
        Atomically writes key with expiry ttl iff key holds no live value and
        none of guard_keys holds a live value.

        Returns:
            True if the value was written.
        """

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Unconditional upsert; ttl=None means no expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Returns number of live keys removed."""

    @abstractmethod
    async def apply(self, ops: Iterable[StoreOp]) -> list[bool]:
        """
        Applies all ops in one atomic transaction.

        Returns:
            One flag per op: whether the SetOp was written, or whether the
            DeleteOp removed a live key.
        """

    @abstractmethod
    def scan_prefix(self, prefix: str) -> AsyncIterator[str]:
        """Enumerates live keys starting with prefix, in no particular order."""

    async def count_prefix(self, prefix: str) -> int:
        count = 0
        async for _ in self.scan_prefix(prefix):
            count += 1
        return count

    async def get_many(self, keys: Sequence[str]) -> list[Optional[str]]:
        return [await self.get(key) for key in keys]

    async def close(self) -> None:
        pass
