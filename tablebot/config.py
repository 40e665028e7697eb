"""Service configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration is read from environment variables / .env file.

    The bot token and chat ids are *not* here: they live encrypted in the
    datastore and are edited at runtime through the admin surface.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Secrets ───────────────────────────────────────────────────────
    ENCRYPTION_KEY: str  # 64 hex chars (32 bytes, AES-256)

    # ── Storage ───────────────────────────────────────────────────────
    DATA_DIR: Path = Path("data")
    DATABASE_FILE: Path = Path("data/database.sqlite")
    UPLOADS_DIR: Path = Path("uploads")
    BACKUP_DIR: Path = Path("data/backups")

    # ── Locale / schedule ─────────────────────────────────────────────
    TIMEZONE: str = "Europe/Moscow"
    BACKUP_HOURS: str = "0,8"  # comma-separated local hours

    # ── Bot ───────────────────────────────────────────────────────────
    PUBLIC_URL: str = ""
    LOCAL_API_URL: str | None = None

    # ── Admin HTTP ────────────────────────────────────────────────────
    HTTP_HOST: str = "0.0.0.0"
    HTTP_PORT: int = 3001
    ADMIN_API_TOKEN: str = ""

    # ── Logging ───────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    @field_validator("ENCRYPTION_KEY")
    @classmethod
    def _check_key(cls, value: str) -> str:
        value = value.strip()
        if len(value) != 64:
            raise ValueError("ENCRYPTION_KEY must be a 64 char hex string (32 bytes)")
        bytes.fromhex(value)  # raises ValueError on non-hex input
        return value

    # ── Helpers ───────────────────────────────────────────────────────
    @property
    def backup_hours(self) -> list[int]:
        hours = sorted({int(h.strip()) for h in self.BACKUP_HOURS.split(",") if h.strip()})
        for h in hours:
            if not 0 <= h <= 23:
                raise ValueError(f"BACKUP_HOURS entry out of range: {h}")
        return hours

    @property
    def encryption_key(self) -> bytes:
        return bytes.fromhex(self.ENCRYPTION_KEY)


settings = Settings()  # type: ignore[call-arg]
