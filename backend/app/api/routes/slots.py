from __future__ import annotations

from fastapi import APIRouter, Query

from ...schemas import DaySlotsResponse
from ..utils import Coordinator, TenantId

router = APIRouter(tags=["slots"])


@router.get("/slots", response_model=DaySlotsResponse, response_model_exclude_none=True)
def list_day_slots(
    coordinator: Coordinator,
    tenant_id: TenantId,
    date: str = Query(..., description="Day in YYYY-MM-DD, operating timezone"),
    staff_id: str | None = Query(None, alias="staffId"),
):
    staff = (staff_id or "").strip() or None
    slots = coordinator.day_slots(tenant_id, date, staff)
    return DaySlotsResponse(date=date.strip(), staff_id=staff, slots=slots)
