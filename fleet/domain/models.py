import json
from dataclasses import dataclass, field, asdict
from typing import Optional, Any

from fleet.domain.errors import CorruptRecordError
from fleet.domain.states import WorkerState


def _load(key: str, raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise CorruptRecordError(key, e) from e
    if not isinstance(data, dict):
        raise CorruptRecordError(key, f"expected object, got {type(data).__name__}")
    return data

def _number(value: Any) -> Optional[float]:
    # Heartbeats written by older or foreign workers may carry strings or nulls
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

def _count(value: Any) -> Optional[int]:
    number = _number(value)
    return int(number) if number is not None else None


@dataclass
class Lease:
    item_id: str
    holder_id: str
    acquired_at: float
    ttl: int

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.ttl

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, key: str, raw: str) -> "Lease":
        data = _load(key, raw)
        try:
            return cls(
                item_id=str(data["item_id"]),
                holder_id=str(data["holder_id"]),
                acquired_at=float(data["acquired_at"]),
                ttl=int(data["ttl"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptRecordError(key, e) from e


@dataclass
class CompletionMarker:
    item_id: str
    completed_by: str
    completed_at: float
    result_summary: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True, default=str)

    @classmethod
    def from_json(cls, key: str, raw: str) -> "CompletionMarker":
        data = _load(key, raw)
        try:
            summary = data.get("result_summary") or {}
            if not isinstance(summary, dict):
                summary = {"value": summary}
            return cls(
                item_id=str(data["item_id"]),
                completed_by=str(data["completed_by"]),
                completed_at=float(data["completed_at"]),
                result_summary=summary,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptRecordError(key, e) from e


@dataclass
class WorkerHeartbeat:
    """
    Liveness snapshot of one worker.
    Every field but worker_id may be missing in a stored record; the monitor
    renders placeholders for them.
    """
    worker_id: str
    started_at: Optional[float] = None
    last_active: Optional[float] = None
    processed_count: Optional[int] = None
    failed_count: Optional[int] = None
    current_item: Optional[str] = None
    state: Optional[WorkerState] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, key: str, raw: str, worker_id: Optional[str] = None) -> "WorkerHeartbeat":
        data = _load(key, raw)
        state = data.get("state")
        current = data.get("current_item")
        return cls(
            worker_id=str(data.get("worker_id") or worker_id or key),
            started_at=_number(data.get("started_at")),
            last_active=_number(data.get("last_active")),
            processed_count=_count(data.get("processed_count")),
            failed_count=_count(data.get("failed_count")),
            current_item=str(current) if current else None,
            state=WorkerState(state) if state in WorkerState._value2member_map_ else None,
        )


@dataclass(frozen=True)
class ItemStatus:
    item_id: str
    is_leased: bool
    is_completed: bool


@dataclass(frozen=True)
class FleetCounts:
    leased: int
    completed: int
