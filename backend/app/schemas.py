from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field

from .contracts import CamelModel, ReservationRecord, ReservationStatus, SlotAvailability


class DaySlotsResponse(CamelModel):
    date: str
    staff_id: str | None = None
    slots: list[SlotAvailability] = Field(default_factory=list)


class ReserveRequest(CamelModel):
    # presence is checked by the coordinator so it can report every missing field
    date: str | None = None
    time: str | None = None
    customer_name: str | None = None
    phone: str | None = None
    staff_id: str | None = None


class ReserveResponse(CamelModel):
    ok: Literal[True] = True
    reservation_id: str
    date: str
    time: str
    customer_name: str
    staff_id: str | None = None


class CancelResponse(CamelModel):
    ok: Literal[True] = True
    reservation_id: str
    date: str
    time: str


class ReservationView(CamelModel):
    reservation_id: str
    date: str
    time: str
    customer_name: str
    phone: str | None = None
    staff_id: str | None = None
    status: ReservationStatus
    created_at: datetime
    canceled_at: datetime | None = None

    @classmethod
    def from_record(cls, record: ReservationRecord) -> ReservationView:
        return cls(
            reservation_id=record.id,
            date=record.date,
            time=record.time,
            customer_name=record.customer_name,
            phone=record.phone,
            staff_id=record.staff_id,
            status=record.status,
            created_at=record.created_at,
            canceled_at=record.canceled_at,
        )


class ErrorResponse(CamelModel):
    ok: Literal[False] = False
    error: str
    message: str
