from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date, datetime, timedelta
from uuid import uuid4
from zoneinfo import ZoneInfo

from .availability import compute_day_slots, evaluate_slot, local_now, slot_datetime
from .calendar_source import CalendarSource, calendars
from .contracts import ReservationRecord, SlotAvailability, SlotReason, StaffShift, TenantSettings
from .errors import (
    AlreadyCanceled,
    CutoffPassed,
    ReservationNotFound,
    SlotConflict,
    SlotUnavailable,
    ValidationFailed,
)
from .logging_config import get_logger
from .notifications import NotificationDispatcher, WebhookNotifier
from .settings import settings
from .slot_lock import SlotKey, SlotLockActor, SlotLockRegistry
from .storage import DB, ReservationStore
from .validators import is_hhmm, normalize_display_name, normalize_phone, parse_day

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _system_clock() -> datetime:
    return datetime.now(settings.tzinfo)


def _raise_for(reason: SlotReason, key: SlotKey) -> None:
    context = {"date": key.date, "time": key.time}
    if reason == "reserved":
        raise SlotConflict(**context)
    if reason == "cutoff":
        raise SlotUnavailable("Booking for that time has closed", code="cutoff_passed", **context)
    if reason == "closed":
        raise SlotUnavailable("The salon is closed at that time", code="slot_closed", **context)
    raise SlotUnavailable("The staff member is not working at that time", code="staff_unavailable", **context)


class ReservationCoordinator:
    """Entry point for slot listings, bookings and cancellations.

    Validation happens before any lock is touched; every state transition is
    delegated to the slot's actor turn; notifications go out after the turn is
    released and never influence the result.
    """

    def __init__(
        self,
        store: ReservationStore,
        calendar_source: CalendarSource,
        dispatcher: NotificationDispatcher,
        *,
        registry: SlotLockRegistry | None = None,
        clock: Clock | None = None,
        lock_timeout: float | None = None,
        tz: ZoneInfo | None = None,
    ) -> None:
        self.store = store
        self.calendars = calendar_source
        self.dispatcher = dispatcher
        self.actor = SlotLockActor(
            store,
            registry,
            timeout=settings.SLOT_LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout,
        )
        self.clock = clock or _system_clock
        self.tz = tz or settings.tzinfo

    @property
    def registry(self) -> SlotLockRegistry:
        return self.actor.registry

    def now(self) -> datetime:
        return local_now(self.clock(), self.tz)

    # -------- availability --------
    def day_slots(self, tenant_id: str, day: str, staff_id: str | None = None) -> list[SlotAvailability]:
        try:
            parsed = parse_day((day or "").strip())
        except ValueError as exc:
            raise ValidationFailed(str(exc), code="bad_date") from exc
        tenant = self.calendars.get_settings(tenant_id)
        shift = self.calendars.get_staff_shift(tenant_id, staff_id)
        reserved = self.store.active_times(tenant_id, parsed.isoformat())
        return compute_day_slots(
            parsed,
            tenant,
            shift,
            tenant.rules.cutoff_minutes,
            self.now(),
            reserved,
            tz=self.tz,
        )

    # -------- create --------
    async def reserve(
        self,
        tenant_id: str,
        day: str | None,
        time_str: str | None,
        customer_name: str | None,
        phone: str | None = None,
        staff_id: str | None = None,
    ) -> ReservationRecord:
        parsed_day, time_str, name, phone = self._validate_booking(day, time_str, customer_name, phone)
        staff_id = (staff_id or "").strip() or None
        key = SlotKey(tenant_id, parsed_day.isoformat(), time_str)

        # fail fast on a stale snapshot; the turn re-checks with fresh state
        tenant, reason = await asyncio.to_thread(self._precheck, key, parsed_day, staff_id)
        if reason is not None:
            logger.info("reservation_rejected", slot=str(key), reason=reason)
            _raise_for(reason, key)

        record = ReservationRecord(
            id=str(uuid4()),
            tenant_id=tenant_id,
            date=key.date,
            time=key.time,
            customer_name=name,
            phone=phone,
            staff_id=staff_id,
            status="active",
            created_at=self.now(),
        )

        def revalidate() -> None:
            fresh = self.calendars.get_settings(tenant_id)
            shift = self.calendars.get_staff_shift(tenant_id, staff_id)
            late_reason = self._slot_reason(fresh, shift, parsed_day, time_str, reserved=False)
            if late_reason is not None:
                _raise_for(late_reason, key)

        try:
            created = await self.actor.acquire_and_reserve(
                key,
                record,
                guard=revalidate,
                on_late_commit=lambda late: self._reserved_after_timeout(tenant, late),
            )
        except (SlotConflict, SlotUnavailable) as exc:
            logger.info("reservation_rejected", slot=str(key), reason=exc.code)
            raise

        logger.info("reservation_created", slot=str(key), reservation_id=created.id, staff_id=staff_id)
        self._notify(tenant, "reservation", created)
        return created

    def _precheck(
        self, key: SlotKey, day: date, staff_id: str | None
    ) -> tuple[TenantSettings, SlotReason | None]:
        tenant = self.calendars.get_settings(key.tenant_id)
        shift = self.calendars.get_staff_shift(key.tenant_id, staff_id)
        taken = self.store.active_record(key.tenant_id, key.date, key.time) is not None
        return tenant, self._slot_reason(tenant, shift, day, key.time, reserved=taken)

    def _reserved_after_timeout(self, tenant: TenantSettings, record: ReservationRecord) -> None:
        slot = SlotKey(record.tenant_id, record.date, record.time)
        logger.info("reservation_created_late", slot=str(slot), reservation_id=record.id)
        self._notify(tenant, "reservation", record)

    def _validate_booking(
        self,
        day: str | None,
        time_str: str | None,
        customer_name: str | None,
        phone: str | None,
    ) -> tuple[date, str, str, str | None]:
        fields = (("date", day), ("time", time_str), ("customerName", customer_name))
        missing = [field for field, value in fields if not (value or "").strip()]
        if missing:
            raise ValidationFailed("Missing required fields", code="missing_fields", need=missing)
        try:
            parsed_day = parse_day(day.strip())
        except ValueError as exc:
            raise ValidationFailed(str(exc), code="bad_date") from exc
        if parsed_day < self.now().date():
            raise ValidationFailed("date must not be in the past", code="bad_date")
        time_str = time_str.strip()
        if not is_hhmm(time_str):
            raise ValidationFailed("time must be HH:mm format", code="bad_time")
        try:
            name = normalize_display_name(customer_name, field="customerName")
            phone = normalize_phone(phone)
        except ValueError as exc:
            raise ValidationFailed(str(exc), code="bad_customer") from exc
        return parsed_day, time_str, name, phone

    def _slot_reason(
        self,
        tenant: TenantSettings,
        shift: StaffShift | None,
        day: date,
        time_str: str,
        *,
        reserved: bool,
    ) -> SlotReason | None:
        return evaluate_slot(
            day,
            time_str,
            tenant,
            shift,
            tenant.rules.cutoff_minutes,
            self.now(),
            reserved,
            tz=self.tz,
        )

    # -------- cancel --------
    async def cancel(self, tenant_id: str, reservation_id: str | None) -> ReservationRecord:
        rid = (reservation_id or "").strip()
        if not rid:
            raise ValidationFailed("Missing required fields", code="missing_fields", need=["reservationId"])

        record, from_scan = await asyncio.to_thread(self._locate, tenant_id, rid)
        key = SlotKey(tenant_id, record.date, record.time)
        if from_scan:
            record = await self.actor.acquire_and_repair_index(key, rid)
            logger.info("reverse_index_repaired", reservation_id=rid, slot=str(key))
        if not record.is_active:
            raise AlreadyCanceled(reservationId=rid)

        tenant = await asyncio.to_thread(self.calendars.get_settings, tenant_id)
        now = self.now()
        starts_at = slot_datetime(date.fromisoformat(record.date), record.time, self.tz)
        minutes_left = (starts_at - now).total_seconds() / 60
        if minutes_left < tenant.rules.cancel_minutes:
            logger.info("cancel_rejected", reservation_id=rid, minutes_left=int(minutes_left))
            raise CutoffPassed(
                reservationId=rid,
                cancelMinutes=tenant.rules.cancel_minutes,
            )

        canceled = await self.actor.acquire_and_cancel(key, rid, now)
        logger.info("reservation_canceled", reservation_id=rid, slot=str(key))
        self._notify(tenant, "cancel", canceled)
        return canceled

    def _locate(self, tenant_id: str, rid: str) -> tuple[ReservationRecord, bool]:
        """Find the record for ``rid``; the flag says whether it came from the fallback scan."""
        entry = self.store.get_index(tenant_id, rid)
        if entry is not None:
            if entry.status == "canceled":
                raise AlreadyCanceled(reservationId=rid)
            record = self.store.find_in_slot(tenant_id, entry.date, entry.time, rid)
            if record is not None:
                if not record.is_active:
                    raise AlreadyCanceled(reservationId=rid)
                return record, False
            logger.warning("reverse_index_stale", reservation_id=rid, date=entry.date, time=entry.time)

        record = self._scan(tenant_id, rid)
        if record is None:
            raise ReservationNotFound(reservationId=rid)
        return record, True

    def _scan(self, tenant_id: str, rid: str) -> ReservationRecord | None:
        today = self.now().date()
        first = today - timedelta(days=settings.LEGACY_SCAN_DAYS_BACK)
        total = settings.LEGACY_SCAN_DAYS_BACK + settings.LEGACY_SCAN_DAYS_AHEAD + 1
        for offset in range(total):
            day = (first + timedelta(days=offset)).isoformat()
            for record in self.store.records_for_date(tenant_id, day):
                if record.id == rid:
                    return record
        return None

    # -------- lookups --------
    def get_reservation(self, tenant_id: str, reservation_id: str) -> ReservationRecord:
        record = self.store.get_reservation(tenant_id, reservation_id)
        if record is None:
            record = self._scan(tenant_id, reservation_id)
        if record is None:
            raise ReservationNotFound(reservationId=reservation_id)
        return record

    # -------- notifications --------
    def _notify(self, tenant: TenantSettings, event: str, record: ReservationRecord) -> None:
        prefs = tenant.notifications
        if not prefs.enable_admin_notify:
            return
        if event == "reservation" and not prefs.notify_on_reservation:
            return
        if event == "cancel" and not prefs.notify_on_cancel:
            return
        self.dispatcher.dispatch(format_message(event, record, tenant.store_name), prefs.slack_webhook_url)


def format_message(event: str, record: ReservationRecord, store_name: str | None = None) -> str:
    title = "New reservation" if event == "reservation" else "Reservation canceled"
    lines = [
        f"{title}{f' ({store_name})' if store_name else ''}",
        f"Date: {record.date} {record.time}",
        f"Customer: {record.customer_name}",
    ]
    if record.phone:
        lines.append(f"Phone: {record.phone}")
    if record.staff_id:
        lines.append(f"Staff: {record.staff_id}")
    lines.append(f"ID: {record.id}")
    return "\n".join(lines)


coordinator = ReservationCoordinator(DB, calendars, NotificationDispatcher(WebhookNotifier()))
