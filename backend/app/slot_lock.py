"""Per-slot serialization of reservation mutations.

Every mutation for a ``tenant:date:time`` key runs inside that key's turn,
one at a time and in arrival order. Keys never share a critical section.
The registry only holds ordering state; the reservation store stays the
source of truth, so losing the registry loses nothing durable.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from .contracts import ReservationRecord, ReverseIndexEntry
from .errors import AlreadyCanceled, LockTimeout, ReservationNotFound, SlotConflict
from .logging_config import get_logger
from .storage import ReservationStore

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class SlotKey:
    tenant_id: str
    date: str
    time: str

    def __str__(self) -> str:
        return f"{self.tenant_id}:{self.date}:{self.time}"


@dataclass
class _SlotTurn:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    pending: int = 0
    held_since: float | None = None


def _deliver_late(callback: Callable[[Any], None]) -> Callable[[asyncio.Task[Any]], None]:
    def _done(task: asyncio.Task[Any]) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        callback(task.result())

    return _done


class SlotLockRegistry:
    """Lazily created turn per key, dropped again once nobody is waiting on it."""

    def __init__(self) -> None:
        self._turns: dict[str, _SlotTurn] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._turns)

    def submit(self, key: SlotKey, fn: Callable[..., T], *args: Any) -> asyncio.Task[T]:
        """Schedule ``fn(*args)`` inside the key's turn as an independent task."""
        name = str(key)
        turn = self._turns.get(name)
        if turn is None:
            turn = self._turns[name] = _SlotTurn()
        turn.pending += 1
        task = asyncio.get_running_loop().create_task(self._execute(name, turn, fn, args))
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    async def run(
        self,
        key: SlotKey,
        fn: Callable[..., T],
        *args: Any,
        timeout: float | None = None,
        on_late_result: Callable[[T], None] | None = None,
    ) -> T:
        """Await ``fn`` in the key's turn.

        On timeout the operation keeps running; ``on_late_result`` receives its
        value if it later succeeds.
        """
        # shield: a caller giving up must not abort a half-done write
        task = self.submit(key, fn, *args)
        if timeout is None:
            return await asyncio.shield(task)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            if on_late_result is not None:
                task.add_done_callback(_deliver_late(on_late_result))
            raise

    async def _execute(self, name: str, turn: _SlotTurn, fn: Callable[..., T], args: tuple[Any, ...]) -> T:
        try:
            async with turn.lock:
                turn.held_since = time.monotonic()
                try:
                    return await asyncio.to_thread(fn, *args)
                finally:
                    turn.held_since = None
        finally:
            turn.pending -= 1
            if turn.pending == 0 and self._turns.get(name) is turn:
                del self._turns[name]

    def _finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        # mark the outcome as retrieved even when the caller stopped waiting
        exc = task.exception()
        if exc is not None and not isinstance(exc, (SlotConflict, AlreadyCanceled, ReservationNotFound)):
            logger.debug("slot_operation_failed", error=repr(exc))

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        now = time.monotonic()
        return {
            name: {
                "pending": turn.pending,
                "held_ms": None if turn.held_since is None else round((now - turn.held_since) * 1000, 1),
            }
            for name, turn in self._turns.items()
        }


class SlotLockActor:
    """Reserve/cancel transitions executed under the slot key's exclusive turn.

    Each operation re-reads the store after acquiring the turn and re-checks the
    rule that depends on freshness before writing, so two callers that both saw
    a free slot cannot both book it.
    """

    def __init__(
        self,
        store: ReservationStore,
        registry: SlotLockRegistry | None = None,
        timeout: float | None = None,
    ) -> None:
        self.store = store
        self.registry = registry or SlotLockRegistry()
        self.timeout = timeout

    async def _run(
        self,
        key: SlotKey,
        fn: Callable[..., T],
        *args: Any,
        on_late_result: Callable[[T], None] | None = None,
    ) -> T:
        try:
            return await self.registry.run(key, fn, *args, timeout=self.timeout, on_late_result=on_late_result)
        except asyncio.TimeoutError as exc:
            logger.warning("slot_lock_timeout", slot=str(key), timeout=self.timeout)
            raise LockTimeout(slot=str(key)) from exc

    async def acquire_and_reserve(
        self,
        key: SlotKey,
        record: ReservationRecord,
        guard: Callable[[], None] | None = None,
        on_late_commit: Callable[[ReservationRecord], None] | None = None,
    ) -> ReservationRecord:
        if (record.tenant_id, record.date, record.time) != (key.tenant_id, key.date, key.time):
            raise ValueError(f"record {record.id} does not belong to slot {key}")
        return await self._run(key, self._reserve_locked, key, record, guard, on_late_result=on_late_commit)

    async def acquire_and_cancel(
        self, key: SlotKey, reservation_id: str, canceled_at: datetime
    ) -> ReservationRecord:
        return await self._run(key, self._cancel_locked, key, reservation_id, canceled_at)

    async def acquire_and_repair_index(self, key: SlotKey, reservation_id: str) -> ReservationRecord:
        """Rewrite a missing reverse-index entry from the slot record's current state."""
        return await self._run(key, self._repair_locked, key, reservation_id)

    def _repair_locked(self, key: SlotKey, reservation_id: str) -> ReservationRecord:
        record = self.store.find_in_slot(key.tenant_id, key.date, key.time, reservation_id)
        if record is None:
            raise ReservationNotFound(reservationId=reservation_id)
        self.store.save_index(
            ReverseIndexEntry(
                reservation_id=record.id,
                tenant_id=record.tenant_id,
                date=record.date,
                time=record.time,
                status=record.status,
            )
        )
        return record

    def _reserve_locked(
        self, key: SlotKey, record: ReservationRecord, guard: Callable[[], None] | None
    ) -> ReservationRecord:
        if self.store.active_record(key.tenant_id, key.date, key.time) is not None:
            raise SlotConflict(date=key.date, time=key.time)
        if guard is not None:
            guard()
        self.store.write_reservation(record)
        return record

    def _cancel_locked(self, key: SlotKey, reservation_id: str, canceled_at: datetime) -> ReservationRecord:
        record = self.store.find_in_slot(key.tenant_id, key.date, key.time, reservation_id)
        if record is None:
            raise ReservationNotFound(reservationId=reservation_id)
        if not record.is_active:
            raise AlreadyCanceled(reservationId=reservation_id)
        updated = self.store.mark_canceled(key.tenant_id, key.date, key.time, reservation_id, canceled_at)
        if updated is None:
            raise ReservationNotFound(reservationId=reservation_id)
        return updated
