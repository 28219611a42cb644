from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    # identity provider (bearer tokens are verified against its JWKS)
    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    auth_audience: str | None = Field(default="authenticated", alias="AUTH_AUDIENCE")

    app_base_url: str = Field("http://localhost:5173", alias="APP_BASE_URL")

    qr_token_secret: str | None = Field(default=None, alias="QR_TOKEN_SECRET")
    qr_default_ttl_hours: float = Field(default=24, alias="QR_DEFAULT_TTL_HOURS")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=60, alias="RL_MAX_REQS")

    # daily per-user quotas
    quota_enabled: bool = Field(default=True, alias="QUOTA_ENABLED")
    quota_create_event_per_day: int = Field(default=5, alias="QUOTA_CREATE_EVENT_PER_DAY")
    quota_register_per_day: int = Field(default=200, alias="QUOTA_REGISTER_PER_DAY")
    quota_qr_fetch_per_day: int = Field(default=10000, alias="QUOTA_QR_FETCH_PER_DAY")

    # NATS
    nats_enabled: bool = Field(default=True, alias="NATS_ENABLED")
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_checkin: str = Field("registrations.checked_in", alias="NATS_SUBJECT_CHECKIN")
    nats_subject_event_created: str = Field("events.created", alias="NATS_SUBJECT_EVENT_CREATED")

    # when the duplicate lookup fails: True -> refuse creation, False -> create with a warning
    similarity_fail_closed: bool = Field(default=True, alias="SIMILARITY_FAIL_CLOSED")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, alias="LOG_FILE")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    def daily_quota(self, action: str) -> int:
        return {
            "create_event": self.quota_create_event_per_day,
            "register": self.quota_register_per_day,
            "qr_fetch": self.quota_qr_fetch_per_day,
        }[action]

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
