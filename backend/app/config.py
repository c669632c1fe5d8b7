"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ---------------- DATABASE ----------------
    database_url: str = "sqlite+aiosqlite:///./voice_agents.db"

    # ---------------- APP ----------------
    app_name: str = "Voice Agent Webhooks"
    app_version: str = "1.0.0"
    debug: bool = False
    cors_origins: List[str] = []

    # ---------------- ELEVENLABS WEBHOOKS ----------------
    # Empty secret disables signature verification (development only).
    elevenlabs_webhook_secret: Optional[str] = None
    webhook_tolerance_seconds: int = 300
    side_effect_timeout_seconds: float = 10.0

    # ---------------- LEAD ANALYTICS ----------------
    # Asia/Kolkata, the offset demo bookings are reported in.
    lead_timezone_offset_minutes: int = 330

    @computed_field
    @property
    def webhook_verification_enabled(self) -> bool:
        return bool((self.elevenlabs_webhook_secret or "").strip())


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
