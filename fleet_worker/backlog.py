"""
Backlog sources.

The coordinator imposes no ordering on the backlog; both sources shuffle so a
fleet pulling from the same pool spreads out instead of colliding on the
first items.
"""

import json
import logging
import random
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

logger = logging.getLogger(__name__)


class StaticBacklog:
    """A fixed set of item ids, yielded in random order."""

    def __init__(self, item_ids: Iterable[str], shuffle: bool = True, rng: Optional[random.Random] = None):
        self.item_ids = [i for i in item_ids if i and str(i).strip()]
        self.shuffle = shuffle
        self.rng = rng or random.Random()

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs) -> "StaticBacklog":
        lines = Path(path).read_text().splitlines()
        return cls([line.strip() for line in lines if line.strip() and not line.startswith("#")], **kwargs)

    def __iter__(self) -> Iterator[str]:
        items = list(self.item_ids)
        if self.shuffle:
            self.rng.shuffle(items)
        return iter(items)


class DirectoryBacklog:
    """
    A directory of backlog files, each a JSON object like
    {"category": "...", "items": ["slug", ...]} (an "urls" list of
    .../apps/<slug>/... links is accepted too).

    Files are picked at random and re-listed after each one, so files dropped
    in while the worker runs are picked up. A drained file is renamed to
    .processed, an unreadable one to .failed.
    """

    def __init__(self, directory: Union[str, Path], rng: Optional[random.Random] = None):
        self.directory = Path(directory)
        self.rng = rng or random.Random()

    def _pending_files(self) -> list[Path]:
        return sorted(self.directory.glob("*.json"))

    @staticmethod
    def _items_from(content: dict) -> list[str]:
        if "items" in content:
            return [str(i) for i in content["items"]]
        items = []
        for url in content.get("urls", []):
            if "/apps/" in url:
                items.append(url.split("/apps/")[1].split("/")[0])
        return items

    def _retire(self, path: Path, suffix: str) -> None:
        try:
            path.rename(path.with_suffix(suffix))
        except FileNotFoundError:
            # Another worker on this host retired it first
            pass

    def __iter__(self) -> Iterator[str]:
        while True:
            files = self._pending_files()
            if not files:
                logger.info("No more backlog files to process")
                return

            path = self.rng.choice(files)
            try:
                content = json.loads(path.read_text())
                if not isinstance(content, dict):
                    raise ValueError("backlog file must hold a JSON object")
                items = self._items_from(content)
            except FileNotFoundError:
                continue
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Error reading backlog file {path.name}: {e}")
                self._retire(path, ".failed")
                continue

            group = content.get("category") or path.stem
            logger.info(f"Processing backlog file {path.name}: {group} ({len(items)} items)")
            self.rng.shuffle(items)
            yield from items

            self._retire(path, ".processed")
