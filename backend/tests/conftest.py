import itertools
import json
import os
import sys
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import sentry_sdk
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Disable outbound Sentry calls during tests
sentry_sdk.init = lambda *args, **kwargs: None  # type: ignore[assignment]
os.environ["SENTRY_DSN"] = ""
os.environ["TIMEZONE"] = "Asia/Tokyo"
test_data_dir = ROOT / "artifacts" / "test-data"
test_data_dir.mkdir(parents=True, exist_ok=True)
os.environ["DATA_DIR"] = str(test_data_dir)

from backend.app.api.utils import get_coordinator  # noqa: E402
from backend.app.calendar_source import CalendarSource  # noqa: E402
from backend.app.lifecycle import ReservationCoordinator  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.notifications import NotificationDispatcher  # noqa: E402
from backend.app.storage import DB, ReservationStore  # noqa: E402

JST = ZoneInfo("Asia/Tokyo")


def jst(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=JST)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def notify(self, message: str, recipient_ref: str) -> None:
        if self.fail:
            raise RuntimeError("webhook down")
        self.sent.append((message, recipient_ref))


@pytest.fixture
def store(tmp_path: Path) -> ReservationStore:
    return ReservationStore(tmp_path / "reservations.json")


@pytest.fixture
def calendar_source(tmp_path: Path) -> CalendarSource:
    return CalendarSource(tmp_path / "tenants")


@pytest.fixture
def write_tenant(calendar_source: CalendarSource) -> Callable[[str, dict], None]:
    bumps = itertools.count(1)

    def _write(tenant_id: str, payload: dict) -> None:
        path = calendar_source.path_for(tenant_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload), encoding="utf-8")
        # rewrites inside one timestamp tick must still invalidate the mtime cache
        stamp = path.stat().st_mtime + next(bumps)
        os.utime(path, (stamp, stamp))

    return _write


@pytest.fixture
def clock() -> FixedClock:
    # the day before the 2025-06-02 (Monday) scenario day
    return FixedClock(jst(2025, 6, 1, 9, 0))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def coordinator(
    store: ReservationStore,
    calendar_source: CalendarSource,
    notifier: RecordingNotifier,
    clock: FixedClock,
) -> ReservationCoordinator:
    return ReservationCoordinator(
        store,
        calendar_source,
        NotificationDispatcher(notifier),
        clock=clock,
        lock_timeout=5.0,
        tz=JST,
    )


@pytest.fixture
def client(coordinator: ReservationCoordinator):
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    try:
        yield TestClient(app, base_url="http://api.testserver")
    finally:
        app.dependency_overrides.pop(get_coordinator, None)


@pytest.fixture(autouse=True)
def clean_reservations():
    DB.reset()
    yield
    DB.reset()
