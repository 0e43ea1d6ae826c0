from __future__ import annotations

from collections.abc import Collection
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from .contracts import BusinessCalendar, SlotAvailability, SlotReason, StaffShift
from .settings import settings

MINUTES_PER_DAY = 24 * 60

# Highest priority first; only the first condition that fires is reported.
REASON_PRIORITY: tuple[SlotReason, ...] = ("reserved", "cutoff", "closed", "shift")


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def js_weekday(day: date) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday, as stored in calendars and shifts."""
    return day.isoweekday() % 7


def _normalize_timezone(dt: datetime, tz: ZoneInfo) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def local_now(now: datetime, tz: ZoneInfo | None = None) -> datetime:
    return _normalize_timezone(now, tz or settings.tzinfo)


def slot_datetime(day: date, time_str: str, tz: ZoneInfo | None = None) -> datetime:
    minutes = time_to_minutes(time_str)
    return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tz or settings.tzinfo)


def business_hours_for_date(day: date, calendar: BusinessCalendar) -> tuple[str, str] | None:
    """Open/close window for ``day`` or ``None`` when the salon is closed.

    A dated exception wins over the weekly template: ``closed`` closes the
    whole day, ``short``/``special`` replace the window for that day only.
    """
    exception = calendar.exception_for(day.isoformat())
    if exception:
        if exception.type == "closed":
            return None
        if exception.open_time and exception.close_time:
            return exception.open_time, exception.close_time

    if js_weekday(day) in calendar.closed_weekdays:
        return None

    hours = calendar.business_hours
    return hours.open_time, hours.close_time


def generate_slots(open_time: str, close_time: str, slot_interval_min: int) -> list[str]:
    open_min = time_to_minutes(open_time)
    close_min = time_to_minutes(close_time)
    return [minutes_to_time(m) for m in range(open_min, close_min, slot_interval_min)]


def _within(target: int, start: str, end: str, break_start: str | None, break_end: str | None) -> bool:
    if not (time_to_minutes(start) <= target < time_to_minutes(end)):
        return False
    if break_start and break_end:
        if time_to_minutes(break_start) <= target < time_to_minutes(break_end):
            return False
    return True


def is_working_time(day: date, time_str: str, shift: StaffShift | None) -> bool:
    if shift is None:
        # no shift configured for the staff member: treat as always working
        return True

    target = time_to_minutes(time_str)
    exception = shift.exception_for(day.isoformat())
    if exception:
        if exception.type == "off":
            return False
        if exception.start and exception.end:
            return _within(target, exception.start, exception.end, exception.break_start, exception.break_end)

    weekly = shift.weekly_for(js_weekday(day))
    if weekly and weekly.enabled:
        return _within(target, weekly.start, weekly.end, weekly.break_start, weekly.break_end)
    return False


def is_past_cutoff(day: date, time_str: str, cutoff_minutes: int, now: datetime, tz: ZoneInfo | None = None) -> bool:
    """Lead-time rule for today only; any other day is never past cutoff."""
    now_local = local_now(now, tz)
    if day != now_local.date():
        return False
    now_min = now_local.hour * 60 + now_local.minute
    return time_to_minutes(time_str) - now_min <= cutoff_minutes


def _on_grid(time_str: str, window: tuple[str, str] | None, interval: int) -> bool:
    if window is None:
        return False
    target = time_to_minutes(time_str)
    open_min = time_to_minutes(window[0])
    close_min = time_to_minutes(window[1])
    return open_min <= target < close_min and (target - open_min) % interval == 0


def evaluate_slot(
    day: date,
    time_str: str,
    calendar: BusinessCalendar,
    shift: StaffShift | None,
    cutoff_minutes: int,
    now: datetime,
    reserved: bool,
    *,
    tz: ZoneInfo | None = None,
) -> SlotReason | None:
    """Return the highest-priority reason the slot is unavailable, or ``None``."""
    window = business_hours_for_date(day, calendar)
    fired = {
        "reserved": reserved,
        "cutoff": is_past_cutoff(day, time_str, cutoff_minutes, now, tz),
        "closed": not _on_grid(time_str, window, calendar.business_hours.slot_interval_min),
        "shift": shift is not None and not is_working_time(day, time_str, shift),
    }
    return next((reason for reason in REASON_PRIORITY if fired[reason]), None)


def compute_day_slots(
    day: date,
    calendar: BusinessCalendar,
    shift: StaffShift | None,
    cutoff_minutes: int,
    now: datetime,
    reserved_times: Collection[str] = (),
    *,
    tz: ZoneInfo | None = None,
) -> list[SlotAvailability]:
    """
    Returns one entry per grid slot of ``day``:
      [{"time": "HH:MM", "available": bool, "reason": reserved|cutoff|closed|shift}]
    A closed day has no slots at all.
    """
    window = business_hours_for_date(day, calendar)
    if window is None:
        return []

    reserved = set(reserved_times)
    slots: list[SlotAvailability] = []
    for time_str in generate_slots(window[0], window[1], calendar.business_hours.slot_interval_min):
        reason = evaluate_slot(
            day,
            time_str,
            calendar,
            shift,
            cutoff_minutes,
            now,
            time_str in reserved,
            tz=tz,
        )
        slots.append(SlotAvailability(time=time_str, available=reason is None, reason=reason))
    return slots
