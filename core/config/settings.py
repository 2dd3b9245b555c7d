# Complete settings for the Kite CLI core
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from typing import Literal
from pathlib import Path
import os


def _default_cache_root() -> Path:
    xdg = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "kite-cli"


def _default_config_root() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "kite-cli"


class KiteSettings(BaseModel):
    api_key: str = ""
    api_secret: str = ""
    base_url: str = "https://api.kite.trade"
    login_url: str = "https://kite.zerodha.com/connect/login"
    api_version: str = "3"
    user_agent: str = "kite-cli/1.0.0"
    request_timeout_seconds: float = 30.0
    # Transport retries (connection/DNS/timeout only)
    max_retries: int = 3
    retry_backoff_min_seconds: float = 0.1
    retry_backoff_max_seconds: float = 2.0

    @field_validator("base_url", "login_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_retries must be at least 1 (the initial attempt)")
        return v


class RateLimitSettings(BaseModel):
    """Account-wide request budget enforced by the upstream API"""
    capacity: int = 3
    refill_per_second: float = 3.0
    acquire_timeout_seconds: float = 30.0

    @field_validator("capacity")
    @classmethod
    def validate_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("capacity must be positive")
        return v

    @field_validator("refill_per_second")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("refill_per_second must be positive")
        return v


class CacheSettings(BaseModel):
    instruments_dir: Path = Field(default_factory=lambda: _default_cache_root() / "instruments")
    ttl_hours: float = 24.0


class SessionSettings(BaseModel):
    session_file: Path = Field(default_factory=lambda: _default_config_root() / "session.json")
    # rolling: now + ttl_hours; daily_reset: next upstream reset (06:00 IST)
    expiry_mode: Literal["rolling", "daily_reset"] = "rolling"
    ttl_hours: float = 24.0
    reset_timezone: str = "Asia/Kolkata"
    reset_hour: int = 6
    # How long interactive login waits for the pasted request token
    prompt_timeout_seconds: float = 300.0


class LoggingSettings(BaseModel):
    level: str = "WARNING"
    json_format: bool = False
    # Redaction
    redact_keys: list[str] = [
        "authorization", "access_token", "request_token", "api_secret",
        "checksum", "password", "secret", "token",
    ]


class Settings(BaseSettings):
    """Main application settings, loaded from environment variables"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    kite: KiteSettings = KiteSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    cache: CacheSettings = CacheSettings()
    session: SessionSettings = SessionSettings()
    logging: LoggingSettings = LoggingSettings()


# No global settings instance - use dependency injection instead
