"""Key-Value Storage — persistent string store backing the fallback queue.

Invariants:
    - Values are opaque strings; callers own serialization
    - JsonFileStorage writes the whole document atomically (temp file + os.replace),
      so a crash mid-write leaves the previous snapshot intact
    - Errors surface as OSError/ValueError — never swallowed here

Design Decisions:
    - One JSON document for all keys: mirrors the browser storage the queue
      was designed against (one origin, a handful of small keys)
    - No cross-process locking: the retry flag is a best-effort single-flight
      mechanism, not a distributed lock
    - Synchronous file IO, called straight from the event loop (retry passes,
      intake background tasks). The document holds a few small keys, so a
      read or atomic rewrite blocks for far less than one downstream call;
      unlike SMTP it is not pushed to asyncio.to_thread
"""

import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class MemoryStorage:
    """Process-local storage. Lost on restart."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def ping(self) -> bool:
        return True


class JsonFileStorage:
    """File-backed storage surviving process restarts."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def get_item(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def ping(self) -> bool:
        """Readiness check: document readable and directory writable."""
        try:
            self._load()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            return os.access(self.path.parent, os.W_OK)
        except (OSError, ValueError) as e:
            logger.error(f"Queue storage check failed: {e}")
            return False

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
