from __future__ import annotations

from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = REPO_ROOT / ".env"
DEFAULT_TIMEZONE = "Asia/Tokyo"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore"
    )

    # whether to expose the debug endpoints
    DEBUG: bool = True

    # persistence directory (defaults to ~/.salon-reserve-data)
    DATA_DIR: Path | None = None

    # CORS allow origins (comma-separated). Default empty (no cross-origin).
    CORS_ALLOW_ORIGINS: str = ""

    # Single operating timezone for every date/time computation
    TIMEZONE: str = DEFAULT_TIMEZONE
    DEFAULT_TENANT: str = "default"

    # Slot locking
    SLOT_LOCK_TIMEOUT_SECONDS: float = 10.0

    # Cancel fallback scan for reservations written before the reverse index
    LEGACY_SCAN_DAYS_BACK: int = 7
    LEGACY_SCAN_DAYS_AHEAD: int = 90

    # Outbound notifications
    NOTIFY_TIMEOUT_SECONDS: float = 5.0
    NOTIFY_FAILURE_HISTORY: int = 100

    # Observability
    SENTRY_DSN: str | None = None
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_RELEASE: str | None = None
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2

    @property
    def allow_origins(self) -> list[str]:
        s = (self.CORS_ALLOW_ORIGINS or "").strip()
        if s == "*":
            return ["*"]
        if s == "":
            return []
        return [part.strip() for part in s.split(",") if part.strip()]

    @property
    def data_dir(self) -> Path:
        if self.DATA_DIR:
            return Path(self.DATA_DIR).expanduser().resolve()
        return (Path.home() / ".salon-reserve-data").resolve()

    @property
    def tzinfo(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.TIMEZONE or DEFAULT_TIMEZONE)
        except ZoneInfoNotFoundError:
            return ZoneInfo(DEFAULT_TIMEZONE)


settings = Settings()
# make sure directory exists when imported
settings.data_dir.mkdir(parents=True, exist_ok=True)
