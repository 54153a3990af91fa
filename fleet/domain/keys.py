from dataclasses import dataclass

LEASE = "lease"
COMPLETED = "completed"
HEARTBEAT = "heartbeat"


def normalize_item_id(item_id: str) -> str:
    """
    Case-normalizes an item id so 'Shopify' and 'shopify ' share one key.
    """
    if item_id is None:
        raise ValueError("item_id is required")
    normalized = str(item_id).strip().lower()
    if not normalized:
        raise ValueError("item_id must not be empty")
    return normalized


@dataclass(frozen=True)
class KeySpace:
    """
    Key layout for one pipeline stage.

    <stage>:lease:<item>       live lease (expires)
    <stage>:completed:<item>   completion marker (write-once)
    <stage>:heartbeat:<worker> worker liveness (expires)
    """
    stage: str = "app"

    def __post_init__(self):
        if not self.stage or ":" in self.stage:
            raise ValueError(f"Invalid stage name: {self.stage!r}")

    @property
    def lease_prefix(self) -> str:
        return f"{self.stage}:{LEASE}:"

    @property
    def completed_prefix(self) -> str:
        return f"{self.stage}:{COMPLETED}:"

    @property
    def heartbeat_prefix(self) -> str:
        return f"{self.stage}:{HEARTBEAT}:"

    def lease(self, item_id: str) -> str:
        return self.lease_prefix + normalize_item_id(item_id)

    def completed(self, item_id: str) -> str:
        return self.completed_prefix + normalize_item_id(item_id)

    def heartbeat(self, worker_id: str) -> str:
        if not worker_id:
            raise ValueError("worker_id must not be empty")
        return self.heartbeat_prefix + worker_id

    @staticmethod
    def suffix(key: str, prefix: str) -> str:
        return key[len(prefix):] if key.startswith(prefix) else key
