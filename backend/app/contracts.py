from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .validators import DATE_RE, ensure_hhmm

ReservationStatus = Literal["active", "canceled"]
SlotReason = Literal["reserved", "cutoff", "closed", "shift"]


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Business calendar (admin-owned, read-only to the booking core) ---
class BusinessHours(CamelModel):
    open_time: str = "10:00"
    close_time: str = "19:00"
    slot_interval_min: int = 30

    @field_validator("open_time", "close_time")
    @classmethod
    def _hhmm(cls, value: str, info) -> str:
        return ensure_hhmm(value, field=f"businessHours.{info.field_name}")

    @field_validator("slot_interval_min")
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("businessHours.slotIntervalMin must be positive number")
        return value

    @model_validator(mode="after")
    def _close_after_open(self) -> BusinessHours:
        if _minutes(self.open_time) >= _minutes(self.close_time):
            raise ValueError("businessHours.closeTime must be after openTime")
        return self


class BusinessException(CamelModel):
    date: str
    type: Literal["closed", "short", "special"]
    open_time: str | None = None
    close_time: str | None = None
    memo: str | None = None

    @field_validator("date")
    @classmethod
    def _date_format(cls, value: str) -> str:
        if not DATE_RE.match(value):
            raise ValueError("exception.date must be YYYY-MM-DD format")
        return value

    @model_validator(mode="after")
    def _override_window(self) -> BusinessException:
        if self.type in ("short", "special"):
            if not self.open_time or not self.close_time:
                raise ValueError("exception.openTime/closeTime are required for short/special type")
            ensure_hhmm(self.open_time, field="exception.openTime")
            ensure_hhmm(self.close_time, field="exception.closeTime")
            if _minutes(self.open_time) >= _minutes(self.close_time):
                raise ValueError("exception.closeTime must be after openTime")
        return self


class BusinessCalendar(CamelModel):
    business_hours: BusinessHours = Field(default_factory=BusinessHours)
    # 0 = Sunday ... 6 = Saturday
    closed_weekdays: list[int] = Field(default_factory=lambda: [0])
    exceptions: list[BusinessException] = Field(default_factory=list)

    @field_validator("closed_weekdays")
    @classmethod
    def _weekday_range(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("closedWeekdays must be array of numbers 0-6")
        return value

    @field_validator("exceptions")
    @classmethod
    def _unique_dates(cls, value: list[BusinessException]) -> list[BusinessException]:
        seen: set[str] = set()
        for exc in value:
            if exc.date in seen:
                raise ValueError(f"duplicate exception date: {exc.date}")
            seen.add(exc.date)
        return value

    def exception_for(self, day: str) -> BusinessException | None:
        return next((exc for exc in self.exceptions if exc.date == day), None)


class ReservationRules(CamelModel):
    cutoff_minutes: int = Field(120, ge=0, le=10080)
    cancel_minutes: int = Field(1440, ge=0, le=10080)


class NotificationSettings(CamelModel):
    enable_admin_notify: bool = False
    slack_webhook_url: str = ""
    notify_on_reservation: bool = True
    notify_on_cancel: bool = True


# --- Staff shifts ---
class WeeklyShift(CamelModel):
    dow: int = Field(ge=0, le=6)
    enabled: bool = True
    start: str = "10:00"
    end: str = "19:00"
    break_start: str | None = None
    break_end: str | None = None


class ShiftException(CamelModel):
    date: str
    type: Literal["off", "custom"]
    start: str | None = None
    end: str | None = None
    break_start: str | None = None
    break_end: str | None = None

    @model_validator(mode="after")
    def _custom_needs_hours(self) -> ShiftException:
        if self.type == "custom" and (not self.start or not self.end):
            raise ValueError("custom shift exception requires start and end")
        return self


class StaffShift(CamelModel):
    staff_id: str = ""
    weekly: list[WeeklyShift] = Field(default_factory=list)
    exceptions: list[ShiftException] = Field(default_factory=list)

    def exception_for(self, day: str) -> ShiftException | None:
        return next((exc for exc in self.exceptions if exc.date == day), None)

    def weekly_for(self, dow: int) -> WeeklyShift | None:
        return next((ws for ws in self.weekly if ws.dow == dow), None)


class TenantSettings(BusinessCalendar):
    store_name: str | None = None
    public_days: int = Field(14, ge=1, le=365)
    rules: ReservationRules = Field(default_factory=ReservationRules)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    staff_shifts: dict[str, StaffShift] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _stamp_staff_ids(self) -> TenantSettings:
        for staff_id, shift in self.staff_shifts.items():
            if not shift.staff_id:
                shift.staff_id = staff_id
        return self


# --- Reservations ---
class ReservationRecord(BaseModel):
    id: str
    tenant_id: str
    date: str
    time: str
    customer_name: str
    phone: str | None = None
    staff_id: str | None = None
    status: ReservationStatus = "active"
    created_at: datetime
    canceled_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class ReverseIndexEntry(BaseModel):
    reservation_id: str
    tenant_id: str
    date: str
    time: str
    status: ReservationStatus = "active"


class SlotAvailability(CamelModel):
    time: str
    available: bool
    reason: SlotReason | None = None
