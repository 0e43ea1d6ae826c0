from __future__ import annotations

from fastapi import APIRouter

from ...schemas import CancelResponse, ErrorResponse, ReservationView, ReserveRequest, ReserveResponse
from ..utils import Coordinator, TenantId

router = APIRouter(tags=["reservations"])

CONFLICT_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.post(
    "/reserve",
    response_model=ReserveResponse,
    response_model_exclude_none=True,
    status_code=201,
    responses=CONFLICT_RESPONSES,
)
async def reserve(payload: ReserveRequest, coordinator: Coordinator, tenant_id: TenantId):
    record = await coordinator.reserve(
        tenant_id,
        payload.date,
        payload.time,
        payload.customer_name,
        phone=payload.phone,
        staff_id=payload.staff_id,
    )
    return ReserveResponse(
        reservation_id=record.id,
        date=record.date,
        time=record.time,
        customer_name=record.customer_name,
        staff_id=record.staff_id,
    )


@router.delete("/reservations/{reservation_id}", response_model=CancelResponse, responses=CONFLICT_RESPONSES)
async def cancel_reservation(reservation_id: str, coordinator: Coordinator, tenant_id: TenantId):
    record = await coordinator.cancel(tenant_id, reservation_id)
    return CancelResponse(reservation_id=record.id, date=record.date, time=record.time)


@router.get(
    "/reservations/{reservation_id}",
    response_model=ReservationView,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
)
def get_reservation(reservation_id: str, coordinator: Coordinator, tenant_id: TenantId):
    return ReservationView.from_record(coordinator.get_reservation(tenant_id, reservation_id))
