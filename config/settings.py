"""
Configuration settings for the Voice Scheduler backend.
Loads from environment variables with validation.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from voice_scheduler.utils.date_utils import BusinessHours, WEEKDAY_KEYS, time_to_minutes
from voice_scheduler.utils.errors import ParseError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "production", "test"] = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    # Twilio Configuration
    twilio_account_sid: str = Field(default="", description="Twilio account SID")
    twilio_auth_token: str = Field(default="", description="Twilio auth token")
    twilio_phone_number: str = Field(default="", description="Twilio phone number")
    twilio_webhook_signature_validation: bool = True
    twilio_timeout_seconds: float = Field(default=10.0, gt=0)
    transfer_phone_number: Optional[str] = Field(
        default=None,
        description="Staff number used when the agent transfers a call"
    )

    # Ultravox Configuration (AI voice agent)
    ultravox_api_key: str = Field(default="", description="Ultravox API key")
    ultravox_api_url: str = Field(
        default="https://api.ultravox.ai/api",
        description="Ultravox REST API base URL"
    )
    ultravox_agent_id: str = Field(default="", description="Ultravox agent ID")
    ultravox_timeout_seconds: float = 10.0

    # Supabase Configuration
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_role_key: str = Field(default="", description="Supabase service role key")
    db_timeout_seconds: float = 10.0

    # Redis Configuration
    redis_url: str = "redis://localhost:6379"
    redis_password: Optional[str] = None
    redis_db: int = Field(default=0, ge=0, le=15)
    redis_enabled: bool = True
    session_ttl_seconds: int = 3600

    # Appointment Configuration
    business_timezone: str = "America/New_York"
    business_hours_start: str = "09:00"
    business_hours_end: str = "17:00"
    business_days: list[int] = [0, 1, 2, 3, 4]  # Mon-Fri (0=Monday)
    business_hours_overrides: dict[str, str] = Field(
        default_factory=dict,
        description='Per-weekday hours, e.g. {"sat": "10:00-14:00", "fri": "closed"}'
    )
    appointment_duration_minutes: int = Field(default=30, gt=0)
    appointment_buffer_minutes: int = Field(default=15, ge=0)
    slot_step_minutes: int = Field(default=15, gt=0)

    # Security
    api_key: str = Field(default="", description="Shared key for tool callbacks and admin routes")

    @field_validator("business_hours_start", "business_hours_end")
    @classmethod
    def _check_clock(cls, value: str) -> str:
        try:
            time_to_minutes(value)
        except ParseError as e:
            raise ValueError(e.message) from e
        return value

    @field_validator("business_days")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        for day in value:
            if day < 0 or day > 6:
                raise ValueError(f"business day out of range: {day}")
        return value

    @field_validator("business_hours_overrides")
    @classmethod
    def _check_overrides(cls, value: dict[str, str]) -> dict[str, str]:
        for key in value:
            if key.lower() not in WEEKDAY_KEYS:
                raise ValueError(f"unknown weekday key: {key}")
        return {k.lower(): v for k, v in value.items()}

    def build_business_hours(self) -> BusinessHours:
        """Compile the uniform window plus per-day overrides into a weekday mapping."""
        return BusinessHours.from_config(
            start=self.business_hours_start,
            end=self.business_hours_end,
            days=self.business_days,
            overrides=self.business_hours_overrides,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
