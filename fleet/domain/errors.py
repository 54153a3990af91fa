class CoordinatorError(Exception):
    """Base exception for fleet coordination errors."""
    pass

class StoreError(CoordinatorError):
    pass

class StoreConnectivityError(StoreError):
    """The Lease Store could not be reached (refused, timed out, dropped)."""
    pass

class CorruptRecordError(CoordinatorError):
    def __init__(self, key, reason):
        self.key = key
        super().__init__(f"Record {key} could not be parsed: {reason}")

class ProcessingError(CoordinatorError):
    def __init__(self, item_id, reason):
        self.item_id = item_id
        super().__init__(f"Processing {item_id} failed: {reason}")
