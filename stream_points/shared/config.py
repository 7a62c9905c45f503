"""Application settings for the stream points bot.

Settings are read from the environment (and an optional ``.env`` file) once and
cached. Components receive the settings object explicitly through the
application context rather than importing a module-level global.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Runtime environment
    environment: Literal["development", "production", "testing"] = "development"
    log_level: str = "INFO"
    verbose_errors_enabled: bool = False

    # Chat connection (mandatory for the chat runner only)
    bot_username: str = ""
    bot_oauth: str = ""
    channel: str = ""
    admin_key: str = ""

    # Storage
    database_url: str = "sqlite+aiosqlite:///./activity.db"
    database_echo: bool = False

    # HTTP API
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Calendar used for daily clip quotas and the monthly job
    timezone: str = "Europe/Berlin"

    # Presence and viewtime
    heartbeat_seconds: int = Field(default=60, gt=0)
    presence_timeout_seconds: int = Field(default=120, gt=0)
    viewtime_seconds_per_point: int = Field(default=60, gt=0)

    # Chat points and anti-spam thresholds
    points_per_message: int = Field(default=1, ge=0)
    min_message_length: int = Field(default=3, ge=0)
    chat_points_cooldown_seconds: int = Field(default=10, ge=0)
    max_chat_points_per_hour: int = Field(default=60, gt=0)
    max_messages_per_window: int = Field(default=6, gt=0)
    spam_detection_window_seconds: int = Field(default=60, gt=0)
    spam_tracking_retention_seconds: int = Field(default=3600, gt=0)

    # Ledger
    large_award_threshold: int = 50

    # Clips
    max_clips_per_day: int = Field(default=3, ge=0)
    clip_ownership_mode: Literal["strict", "permissive"] = "strict"

    # Monthly winners
    monthly_winner_count: int = Field(default=2, gt=0)

    # Feature flags
    enable_chat_points: bool = True
    enable_viewtime_points: bool = True
    stream_offline_check: bool = True

    # Twitch Helix API
    twitch_client_id: str = ""
    twitch_bot_access_token: str = ""
    twitch_bot_app_client_id: str = ""
    twitch_bot_app_access_token: str = ""
    twitch_api_base_url: str = "https://api.twitch.tv/helix"
    twitch_api_timeout: float = 10.0

    @field_validator("channel", "bot_username")
    @classmethod
    def _normalize_login(cls, value: str) -> str:
        return value.strip().lstrip("#").lower()

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def bot_token(self) -> str:
        """Chat token without the ``oauth:`` prefix."""
        return self.bot_oauth[len("oauth:"):] if self.bot_oauth.startswith("oauth:") else self.bot_oauth

    @property
    def helix_configured(self) -> bool:
        return bool(self.twitch_client_id and self.twitch_bot_access_token)

    @property
    def chat_api_configured(self) -> bool:
        return bool(self.twitch_bot_app_client_id and self.twitch_bot_app_access_token)

    def missing_chat_settings(self) -> list[str]:
        """Names of mandatory chat settings that are unset or malformed."""
        missing = [
            name.upper()
            for name in ("bot_username", "bot_oauth", "channel", "admin_key")
            if not getattr(self, name)
        ]
        if self.bot_oauth and not self.bot_oauth.startswith("oauth:"):
            missing.append("BOT_OAUTH (must start with 'oauth:')")
        return missing


@lru_cache
def get_settings(env_file: Optional[str] = ".env") -> Settings:
    """Get cached application settings."""
    return Settings(_env_file=env_file)
