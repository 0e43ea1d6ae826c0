import sentry_sdk
from fastapi import APIRouter, FastAPI, Query
from sentry_sdk.integrations.fastapi import FastApiIntegration

from .api.routes import reservations as reservations_routes
from .api.routes import slots as slots_routes
from .api.utils import Coordinator, TenantId
from .errors import ValidationFailed
from .lifecycle import coordinator
from .logging_config import configure_structlog
from .settings import settings
from .slot_lock import SlotKey
from .utils import add_cors, add_error_handlers, add_request_id_tracing
from .validators import is_hhmm, parse_day

SERVICE_NAME = "salon-reserve"
VERSION = "0.1.0"

# Configure structured logging (must be done before any logging calls)
configure_structlog(json_logs=not settings.DEBUG)

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        release=settings.SENTRY_RELEASE or f"{SERVICE_NAME}@dev",
        integrations=[FastApiIntegration()],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )

app = FastAPI(
    title="Salon Reserve API",
    version=VERSION,
    description="Slot availability and reservation service for salon bookings",
)
add_cors(app)
add_request_id_tracing(app)
add_error_handlers(app)


@app.on_event("shutdown")
async def drain_background_work() -> None:
    await coordinator.registry.drain()
    await coordinator.dispatcher.drain()


def include_router_on_both(router: APIRouter):
    app.include_router(router)
    app.include_router(router, prefix="/v1")


include_router_on_both(slots_routes.router)
include_router_on_both(reservations_routes.router)


@app.get("/health")
def health():
    return {"ok": True, "service": SERVICE_NAME, "version": VERSION}


if settings.DEBUG:

    @app.get("/__debug/reserve-keys")
    def debug_reserve_keys(
        coordinator: Coordinator,
        tenant_id: TenantId,
        date: str = Query(...),
        time: str = Query(...),
    ):
        """Show the slot key a booking would lock, without touching the store."""
        try:
            day = parse_day(date).isoformat()
        except ValueError as exc:
            raise ValidationFailed(str(exc), code="bad_date") from exc
        if not is_hhmm(time):
            raise ValidationFailed("time must be HH:mm format", code="bad_time")
        key = SlotKey(tenant_id, day, time)
        active = coordinator.store.active_record(tenant_id, day, time)
        return {
            "ok": True,
            "slotKey": str(key),
            "lock": coordinator.registry.snapshot().get(str(key)),
            "activeReservationId": active.id if active else None,
        }
