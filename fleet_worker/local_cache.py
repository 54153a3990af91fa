import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Union
from urllib.parse import quote

from fleet.domain.keys import normalize_item_id

logger = logging.getLogger(__name__)


class LocalCompletionCache:
    """
    Per-worker on-disk memo of items known to be complete.

    Consulted before any network round trip to save a status check. Purely an
    optimization: only written once the remote completion marker is known to
    exist, and never treated as proof of completion.
    """

    def __init__(self, directory: Union[str, Path], worker_id: str):
        self.directory = Path(directory)
        self.worker_id = worker_id

    def _path(self, item_id: str) -> Path:
        # Percent-encoding is injective and leaves no path separators
        name = quote(normalize_item_id(item_id), safe="")
        return self.directory / f"{name}.lock"

    def is_complete(self, item_id: str) -> bool:
        try:
            return self._path(item_id).is_file()
        except OSError as e:
            logger.debug(f"Local cache check failed for {item_id}: {e}")
            return False

    def mark_complete(self, item_id: str) -> bool:
        path = self._path(item_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps({
                "processed_at": datetime.now(timezone.utc).isoformat(),
                "worker_id": self.worker_id,
            }))
            return True
        except OSError as e:
            logger.warning(f"Error writing local cache for {item_id}: {e}")
            return False

