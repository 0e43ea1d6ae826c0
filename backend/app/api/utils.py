from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Query

from ..calendar_source import TENANT_ID_RE
from ..errors import ValidationFailed
from ..lifecycle import ReservationCoordinator, coordinator
from ..settings import settings


def get_coordinator() -> ReservationCoordinator:
    return coordinator


def resolve_tenant(
    x_tenant_id: Annotated[str | None, Header()] = None,
    tenant_id: Annotated[str | None, Query(alias="tenantId")] = None,
) -> str:
    """Header wins over the query parameter; both fall back to the default tenant."""
    tenant = (x_tenant_id or tenant_id or settings.DEFAULT_TENANT).strip()
    if not TENANT_ID_RE.match(tenant):
        raise ValidationFailed("tenantId must be 1-64 letters, digits, '-' or '_'", code="bad_tenant")
    return tenant


Coordinator = Annotated[ReservationCoordinator, Depends(get_coordinator)]
TenantId = Annotated[str, Depends(resolve_tenant)]
