"""Local Fallback Queue — durable holding area for quotes not yet confirmed delivered.

Invariants:
    - The queue is one storage entry holding a JSON array of PendingQueueEntry
      objects (camelCase keys); the retry flag is a second entry ("true" or absent)
    - Every mutation is a whole-snapshot read-modify-write (single-threaded access)
    - Correlation ids are unique within the array; duplicates collapse to the first
    - retry_count never decreases and never exceeds max_retries
    - Entries at max_retries are dead-lettered: retained, never purged here
    - enqueue/remove never raise on storage failure; the quote is already
      persisted server-side by the intake handler

Design Decisions:
    - Pydantic model for entries: stored JSON is re-validated on every read, so a
      hand-edited or truncated item is skipped instead of poisoning the pass
    - Storage injected (KeyValueStorage protocol): no module-level singleton
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from quotedesk.core.domain_types import (
    MAX_RETRIES, PENDING_QUOTES_KEY, RETRY_SCHEDULED_KEY, CorrelationId,
)
from quotedesk.core.repository_protocols import KeyValueStorage

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PendingQueueEntry(BaseModel):
    """A quote request awaiting downstream delivery."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    correlation_id: str = Field(min_length=1)
    payload: dict[str, Any]
    retry_count: int = Field(0, ge=0)
    last_retry_timestamp: str | None = None
    timestamp: str

    @property
    def quote_id(self) -> str | None:
        return self.payload.get("quoteId")

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True)


_PATCH_FIELDS = {
    **{name: name for name in PendingQueueEntry.model_fields},
    **{
        info.alias: name
        for name, info in PendingQueueEntry.model_fields.items()
        if info.alias
    },
}


def _normalize_patch(patch: dict) -> dict:
    """Map camelCase or snake_case patch keys to field names."""
    normalized = {}
    for key, value in patch.items():
        if key not in _PATCH_FIELDS:
            raise ValueError(f"Unknown queue entry field: {key}")
        normalized[_PATCH_FIELDS[key]] = value
    if "correlation_id" in normalized:
        raise ValueError("correlation_id cannot be patched")
    return normalized


class LocalFallbackQueue:
    """enqueue / list / remove / update over a KeyValueStorage snapshot."""

    def __init__(
        self,
        storage: KeyValueStorage,
        max_retries: int = MAX_RETRIES,
        storage_key: str = PENDING_QUOTES_KEY,
        flag_key: str = RETRY_SCHEDULED_KEY,
        id_factory: Callable[[], str] | None = None,
    ):
        self._storage = storage
        self.max_retries = max_retries
        self._storage_key = storage_key
        self._flag_key = flag_key
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    # ─── Queue operations ────────────────────────────────────────

    def enqueue(self, payload: dict) -> PendingQueueEntry | None:
        """Append a fresh entry. Returns None (logged) if storage is unavailable."""
        entry = PendingQueueEntry(
            correlation_id=self._id_factory(),
            payload=dict(payload),
            retry_count=0,
            timestamp=utc_now_iso(),
        )
        try:
            entries = self._read()
            taken = {e.correlation_id for e in entries}
            while entry.correlation_id in taken:
                entry.correlation_id = self._id_factory()
            entries.append(entry)
            self._write(entries)
        except (OSError, ValueError) as e:
            logger.warning(
                f"Fallback queue unavailable, entry not stored: {e}",
                extra={"quote_id": entry.quote_id},
            )
            return None
        logger.info(
            "Quote queued for downstream retry",
            extra={
                "correlation_id": entry.correlation_id,
                "quote_id": entry.quote_id,
            },
        )
        return entry

    def list(self) -> list[PendingQueueEntry]:
        """Snapshot of all entries in insertion order (empty if unreadable)."""
        try:
            return self._read()
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read fallback queue: {e}")
            return []

    def get(self, correlation_id: CorrelationId | str) -> PendingQueueEntry | None:
        for entry in self.list():
            if entry.correlation_id == correlation_id:
                return entry
        return None

    def remove(self, correlation_id: CorrelationId | str) -> bool:
        """Delete one entry. Missing id is a no-op. Returns True if removed."""
        try:
            entries = self._read()
            kept = [e for e in entries if e.correlation_id != correlation_id]
            if len(kept) == len(entries):
                return False
            self._write(kept)
        except (OSError, ValueError) as e:
            logger.warning(
                f"Failed to remove queue entry: {e}",
                extra={"correlation_id": correlation_id},
            )
            return False
        return True

    def update(
        self, correlation_id: CorrelationId | str, patch: dict,
    ) -> PendingQueueEntry | None:
        """Merge patch into the matching entry.

        Returns the updated entry, or None when the entry no longer exists or
        storage is unavailable. Raises ValueError for an invalid patch (unknown
        field, correlation id change, retry_count decrease or overflow).
        """
        changes = _normalize_patch(patch)
        try:
            entries = self._read()
        except (OSError, ValueError) as e:
            logger.warning(
                f"Failed to read queue for update: {e}",
                extra={"correlation_id": correlation_id},
            )
            return None

        for i, entry in enumerate(entries):
            if entry.correlation_id != correlation_id:
                continue
            merged = PendingQueueEntry.model_validate(
                {**entry.model_dump(), **changes},
            )
            self._check_retry_count(entry, merged)
            entries[i] = merged
            try:
                self._write(entries)
            except (OSError, ValueError) as e:
                logger.warning(
                    f"Failed to write queue update: {e}",
                    extra={"correlation_id": correlation_id},
                )
                return None
            return merged
        return None

    # ─── Queries ─────────────────────────────────────────────────

    def is_dead(self, entry: PendingQueueEntry) -> bool:
        return entry.retry_count >= self.max_retries

    def list_dead_lettered(self) -> list[PendingQueueEntry]:
        """Entries that exhausted their retry budget."""
        return [e for e in self.list() if self.is_dead(e)]

    def has_retryable(self) -> bool:
        return any(not self.is_dead(e) for e in self.list())

    # ─── Single-flight flag ──────────────────────────────────────

    def is_retry_scheduled(self) -> bool:
        try:
            return self._storage.get_item(self._flag_key) == "true"
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read retry flag: {e}")
            return False

    def set_retry_scheduled(self, scheduled: bool) -> None:
        try:
            if scheduled:
                self._storage.set_item(self._flag_key, "true")
            else:
                self._storage.remove_item(self._flag_key)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to write retry flag: {e}")

    # ─── Internals ───────────────────────────────────────────────

    def _check_retry_count(
        self, before: PendingQueueEntry, after: PendingQueueEntry,
    ) -> None:
        if after.retry_count < before.retry_count:
            raise ValueError(
                f"retry_count cannot decrease ({before.retry_count} -> {after.retry_count})",
            )
        if after.retry_count > self.max_retries:
            raise ValueError(
                f"retry_count cannot exceed {self.max_retries}",
            )

    def _read(self) -> list[PendingQueueEntry]:
        raw = self._storage.get_item(self._storage_key)
        if not raw:
            return []
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError("Stored fallback queue is not a JSON array")

        entries: list[PendingQueueEntry] = []
        seen: set[str] = set()
        for item in data:
            try:
                entry = PendingQueueEntry.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping malformed queue entry: {e}")
                continue
            if entry.correlation_id in seen:
                continue
            seen.add(entry.correlation_id)
            entries.append(entry)
        return entries

    def _write(self, entries: list[PendingQueueEntry]) -> None:
        self._storage.set_item(
            self._storage_key,
            json.dumps([e.to_storage() for e in entries], ensure_ascii=False),
        )
