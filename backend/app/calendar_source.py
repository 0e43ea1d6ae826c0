from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from threading import RLock

from pydantic import ValidationError

from .contracts import StaffShift, TenantSettings
from .errors import ValidationFailed
from .settings import settings

logger = logging.getLogger(__name__)

TENANT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class CalendarSource:
    """
    Read-only view of tenant settings written by the admin side:
      {DATA_DIR}/tenants/{tenant}.json  (camelCase, same shape as the admin settings form)
    A tenant without a file gets the default settings. Parsed settings are cached
    per tenant and re-read whenever the file's mtime changes.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self.base_dir = base_dir or (settings.data_dir / "tenants")
        self._cache: dict[str, tuple[float, TenantSettings]] = {}
        self._lock = RLock()

    def path_for(self, tenant_id: str) -> Path:
        if not TENANT_ID_RE.match(tenant_id or ""):
            raise ValueError(f"invalid tenant id: {tenant_id!r}")
        return self.base_dir / f"{tenant_id}.json"

    def get_settings(self, tenant_id: str) -> TenantSettings:
        path = self.path_for(tenant_id)
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return TenantSettings()

        with self._lock:
            cached = self._cache.get(tenant_id)
            if cached and cached[0] == mtime:
                return cached[1]
            try:
                raw = json.loads(path.read_text(encoding="utf-8") or "{}")
                parsed = TenantSettings.model_validate(raw)
            except (json.JSONDecodeError, ValidationError) as exc:
                logger.warning("Invalid settings for tenant %s in %s: %s", tenant_id, path, exc)
                raise ValidationFailed(
                    "Salon calendar settings are invalid", code="bad_calendar", tenantId=tenant_id
                ) from exc
            self._cache[tenant_id] = (mtime, parsed)
            logger.debug("Loaded settings for tenant %s from %s", tenant_id, path)
            return parsed

    def get_staff_shift(self, tenant_id: str, staff_id: str | None) -> StaffShift | None:
        if not staff_id:
            return None
        return self.get_settings(tenant_id).staff_shifts.get(staff_id)


calendars = CalendarSource()
