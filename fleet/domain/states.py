from enum import StrEnum, auto

class ClaimResult(StrEnum):
    ACQUIRED = auto()   # Lease written, caller may process
    CONFLICT = auto()   # Leased elsewhere or already completed

class ItemOutcome(StrEnum):
    SKIPPED_CACHED = auto()      # Local fast-path cache says complete
    SKIPPED_LEASED = auto()      # Another worker holds the lease
    SKIPPED_COMPLETED = auto()   # Completion marker exists remotely
    SKIPPED_CONFLICT = auto()    # Lost the claim race
    DONE = auto()                # Processed and completed
    FAILED = auto()              # Retries exhausted, lease released
    ERRORED = auto()             # Invalid id, or store error mid-loop

    @property
    def is_skip(self) -> bool:
        return self.value.startswith("skipped_")

class WorkerState(StrEnum):
    RUNNING = auto()
    STOPPED = auto()
