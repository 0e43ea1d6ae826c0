from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any

from pydantic import ValidationError

from .contracts import ReservationRecord, ReverseIndexEntry
from .errors import SlotConflict, StoreError
from .file_lock import FileLock
from .settings import settings

logger = logging.getLogger(__name__)

DATA_DIR = settings.data_dir
RES_PATH = DATA_DIR / "reservations.json"
SLOT_PREFIX = "rsv"
INDEX_PREFIX = "rsv_idx"


def slot_storage_key(tenant_id: str, day: str, time_str: str) -> str:
    return f"{SLOT_PREFIX}:{tenant_id}:{day}:{time_str}"


def index_storage_key(tenant_id: str, reservation_id: str) -> str:
    return f"{INDEX_PREFIX}:{tenant_id}:{reservation_id}"


class ReservationStore:
    """
    Key-value reservation store persisted as one JSON document:
      - ``rsv:{tenant}:{date}:{time}``  -> slot history (list of records, at most one active)
      - ``rsv_idx:{tenant}:{id}``       -> reverse index entry {date, time, status}
    Records are never deleted; cancellation flips their status in place.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or RES_PATH
        self.slots: dict[str, list[dict[str, Any]]] = {}
        self.index: dict[str, dict[str, Any]] = {}
        self._lock = RLock()
        self._load()

    # -------- reads --------
    def slot_records(self, tenant_id: str, day: str, time_str: str) -> list[ReservationRecord]:
        with self._lock:
            raw = self.slots.get(slot_storage_key(tenant_id, day, time_str), [])
            return [ReservationRecord.model_validate(item) for item in raw]

    def active_record(self, tenant_id: str, day: str, time_str: str) -> ReservationRecord | None:
        return next((r for r in self.slot_records(tenant_id, day, time_str) if r.is_active), None)

    def find_in_slot(
        self, tenant_id: str, day: str, time_str: str, reservation_id: str
    ) -> ReservationRecord | None:
        records = self.slot_records(tenant_id, day, time_str)
        return next((r for r in records if r.id == reservation_id), None)

    def records_for_date(self, tenant_id: str, day: str) -> list[ReservationRecord]:
        prefix = f"{SLOT_PREFIX}:{tenant_id}:{day}:"
        with self._lock:
            matches = [items for key, items in self.slots.items() if key.startswith(prefix)]
            return [ReservationRecord.model_validate(item) for items in matches for item in items]

    def active_times(self, tenant_id: str, day: str) -> set[str]:
        return {r.time for r in self.records_for_date(tenant_id, day) if r.is_active}

    def get_index(self, tenant_id: str, reservation_id: str) -> ReverseIndexEntry | None:
        with self._lock:
            raw = self.index.get(index_storage_key(tenant_id, reservation_id))
            return ReverseIndexEntry.model_validate(raw) if raw else None

    def get_reservation(self, tenant_id: str, reservation_id: str) -> ReservationRecord | None:
        entry = self.get_index(tenant_id, reservation_id)
        if entry is None:
            return None
        return self.find_in_slot(tenant_id, entry.date, entry.time, reservation_id)

    # -------- writes --------
    def save_index(self, entry: ReverseIndexEntry) -> None:
        key = index_storage_key(entry.tenant_id, entry.reservation_id)
        with self._lock:
            previous = self.index.get(key)
            self.index[key] = entry.model_dump(mode="json")
            self._commit(lambda: self._restore_index(key, previous))

    def save_record(self, record: ReservationRecord) -> None:
        """Persist a slot record without touching the reverse index."""
        self.write_reservation(record, with_index=False)

    def write_reservation(self, record: ReservationRecord, *, with_index: bool = True) -> None:
        slot_key = slot_storage_key(record.tenant_id, record.date, record.time)
        idx_key = index_storage_key(record.tenant_id, record.id)
        with self._lock:
            history = self.slots.get(slot_key, [])
            if record.is_active and any(item.get("status") == "active" for item in history):
                raise SlotConflict(slot=slot_key)
            previous_history = list(history)
            previous_index = self.index.get(idx_key)
            self.slots[slot_key] = [*history, record.model_dump(mode="json")]
            if with_index:
                self.index[idx_key] = ReverseIndexEntry(
                    reservation_id=record.id,
                    tenant_id=record.tenant_id,
                    date=record.date,
                    time=record.time,
                    status=record.status,
                ).model_dump(mode="json")

            def undo() -> None:
                self._restore_slot(slot_key, previous_history)
                if with_index:
                    self._restore_index(idx_key, previous_index)

            self._commit(undo)

    def mark_canceled(
        self,
        tenant_id: str,
        day: str,
        time_str: str,
        reservation_id: str,
        canceled_at: datetime,
    ) -> ReservationRecord | None:
        """Flip a record and its reverse-index entry to ``canceled`` in one write."""
        slot_key = slot_storage_key(tenant_id, day, time_str)
        idx_key = index_storage_key(tenant_id, reservation_id)
        with self._lock:
            history = self.slots.get(slot_key, [])
            position = next(
                (i for i, item in enumerate(history) if item.get("id") == reservation_id), None
            )
            if position is None:
                return None
            previous_history = [dict(item) for item in history]
            previous_index = self.index.get(idx_key)

            updated = ReservationRecord.model_validate(history[position]).model_copy(
                update={"status": "canceled", "canceled_at": canceled_at}
            )
            history[position] = updated.model_dump(mode="json")
            self.index[idx_key] = ReverseIndexEntry(
                reservation_id=reservation_id,
                tenant_id=tenant_id,
                date=day,
                time=time_str,
                status="canceled",
            ).model_dump(mode="json")

            def undo() -> None:
                self._restore_slot(slot_key, previous_history)
                self._restore_index(idx_key, previous_index)

            self._commit(undo)
            return updated

    def reset(self) -> None:
        with self._lock:
            self.slots = {}
            self.index = {}
            self._save()

    # -------- persistence --------
    def _restore_slot(self, key: str, history: list[dict[str, Any]]) -> None:
        if history:
            self.slots[key] = history
        else:
            self.slots.pop(key, None)

    def _restore_index(self, key: str, entry: dict[str, Any] | None) -> None:
        if entry is None:
            self.index.pop(key, None)
        else:
            self.index[key] = entry

    def _commit(self, undo: Callable[[], None]) -> None:
        try:
            self._save()
        except (OSError, TimeoutError) as exc:
            undo()
            logger.error("Reservation store write failed: %s", exc)
            raise StoreError() from exc

    def _save(self) -> None:
        """
        Save the store to disk with file locking.

        Writes to a temporary file first and swaps it in, so readers never see
        a half-written document.
        """
        data = {"slots": self.slots, "index": self.index}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with FileLock(self.path, timeout=5.0):
            tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)

    def _load(self) -> None:
        if not self.path.exists():
            return

        try:
            with FileLock(self.path, timeout=5.0):
                raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except TimeoutError:
            # Could not acquire lock - keep current in-memory state
            logger.warning("Timed out waiting for %s, starting with in-memory state", self.path)
            return
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable reservation store %s: %s", self.path, exc)
            return

        slots: dict[str, list[dict[str, Any]]] = {}
        for key, items in (raw.get("slots") or {}).items():
            if not str(key).startswith(f"{SLOT_PREFIX}:") or not isinstance(items, list):
                continue
            cleaned: list[dict[str, Any]] = []
            for item in items:
                try:
                    cleaned.append(ReservationRecord.model_validate(item).model_dump(mode="json"))
                except ValidationError:
                    continue
            if cleaned:
                slots[str(key)] = cleaned

        index: dict[str, dict[str, Any]] = {}
        for key, entry in (raw.get("index") or {}).items():
            try:
                index[str(key)] = ReverseIndexEntry.model_validate(entry).model_dump(mode="json")
            except ValidationError:
                continue

        self.slots = slots
        self.index = index


# Single instance
DB = ReservationStore()
