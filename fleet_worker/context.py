import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from fleet.domain.models import WorkerHeartbeat
from fleet.domain.states import ItemOutcome, WorkerState


@dataclass
class WorkerContext:
    """
    Progress of one worker process, threaded through the loop and the
    heartbeat task. Never shared between processes, the Lease Store copy is
    what the monitor reads.
    """
    worker_id: str
    clock: Callable[[], float] = time.time
    started_at: float = 0.0
    processed_count: int = 0
    failed_count: int = 0
    current_item: Optional[str] = None
    state: WorkerState = WorkerState.RUNNING

    def __post_init__(self):
        if not self.started_at:
            self.started_at = self.clock()

    def record(self, outcome: ItemOutcome) -> None:
        if outcome == ItemOutcome.DONE:
            self.processed_count += 1
        elif outcome in (ItemOutcome.FAILED, ItemOutcome.ERRORED):
            self.failed_count += 1

    def snapshot(self) -> WorkerHeartbeat:
        return WorkerHeartbeat(
            worker_id=self.worker_id,
            started_at=self.started_at,
            last_active=self.clock(),
            processed_count=self.processed_count,
            failed_count=self.failed_count,
            current_item=self.current_item,
            state=self.state,
        )


@dataclass
class RunSummary:
    """What a worker run did, returned to the top-level runner to pick an exit code."""
    outcomes: dict[ItemOutcome, int] = field(default_factory=dict)
    fatal: bool = False
    interrupted: bool = False
    error: Optional[str] = None

    def record(self, outcome: ItemOutcome) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def count(self, *outcomes: ItemOutcome) -> int:
        return sum(self.outcomes.get(o, 0) for o in outcomes)

    @property
    def processed(self) -> int:
        return self.count(ItemOutcome.DONE)

    @property
    def skipped(self) -> int:
        return sum(n for o, n in self.outcomes.items() if o.is_skip)

    @property
    def failed(self) -> int:
        return self.count(ItemOutcome.FAILED, ItemOutcome.ERRORED)

    @property
    def exit_code(self) -> int:
        return 1 if self.fatal else 0
