from __future__ import annotations

import pytest

from backend.app.calendar_source import CalendarSource
from backend.app.errors import ValidationFailed


def test_missing_file_yields_default_settings(calendar_source: CalendarSource):
    tenant = calendar_source.get_settings("salon-a")
    assert tenant.business_hours.open_time == "10:00"
    assert tenant.staff_shifts == {}


def test_rewritten_file_is_reloaded(calendar_source: CalendarSource, write_tenant):
    write_tenant("salon-a", {"closedWeekdays": [0]})
    assert calendar_source.get_settings("salon-a").closed_weekdays == [0]

    write_tenant("salon-a", {"closedWeekdays": [0, 1]})
    assert calendar_source.get_settings("salon-a").closed_weekdays == [0, 1]


def test_staff_shift_lookup(calendar_source: CalendarSource, write_tenant):
    write_tenant(
        "salon-a",
        {"staffShifts": {"stylist-a": {"weekly": [{"dow": 1, "start": "10:00", "end": "15:00"}]}}},
    )

    shift = calendar_source.get_staff_shift("salon-a", "stylist-a")
    assert shift is not None
    assert shift.staff_id == "stylist-a"
    assert calendar_source.get_staff_shift("salon-a", "stylist-z") is None
    assert calendar_source.get_staff_shift("salon-a", None) is None
    assert calendar_source.get_staff_shift("salon-a", "") is None


def test_tenant_id_cannot_escape_the_tenants_dir(calendar_source: CalendarSource):
    with pytest.raises(ValueError):
        calendar_source.path_for("../etc")


@pytest.mark.parametrize(
    "body",
    [
        "{not json",
        '{"businessHours": {"openTime": "25:00", "closeTime": "19:00"}}',
    ],
)
def test_malformed_file_raises_bad_calendar(calendar_source: CalendarSource, body: str):
    path = calendar_source.path_for("salon-a")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")

    with pytest.raises(ValidationFailed) as excinfo:
        calendar_source.get_settings("salon-a")
    assert excinfo.value.code == "bad_calendar"
    assert excinfo.value.status_code == 422
    assert excinfo.value.extra == {"tenantId": "salon-a"}


def test_fixed_file_recovers_after_bad_calendar(calendar_source: CalendarSource, write_tenant):
    path = calendar_source.path_for("salon-a")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValidationFailed):
        calendar_source.get_settings("salon-a")

    write_tenant("salon-a", {"closedWeekdays": [3]})
    assert calendar_source.get_settings("salon-a").closed_weekdays == [3]
