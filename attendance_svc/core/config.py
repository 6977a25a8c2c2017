from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field
import secrets

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    # QR tokens
    qr_secret: str | None = Field(default=None, alias="QR_SECRET")
    qr_ttl_minutes: int = Field(default=15, alias="QR_TTL_MINUTES")

    # Verification policy
    face_match_threshold: float = Field(default=0.6, alias="FACE_MATCH_THRESHOLD")
    face_descriptor_length: int = Field(default=128, alias="FACE_DESCRIPTOR_LENGTH")
    geofence_radius_m: float = Field(default=100.0, alias="GEOFENCE_RADIUS_M")

    # Storage / fanout
    storage_timeout_seconds: float = Field(default=5.0, alias="STORAGE_TIMEOUT_SECONDS")
    event_queue_size: int = Field(default=50, alias="EVENT_QUEUE_SIZE")

    # Overdue session sweep
    auto_close_sessions: bool = Field(default=True, alias="AUTO_CLOSE_SESSIONS")
    session_sweep_interval_sec: int = Field(default=30, alias="SESSION_SWEEP_INTERVAL_SEC")
    session_retention_minutes: int = Field(default=60, alias="SESSION_RETENTION_MINUTES")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=60, alias="RL_MAX_REQS")

    # NATS
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_events: str = Field("attendance.events", alias="NATS_SUBJECT_EVENTS")
    enable_nats_events: bool = Field(default=False, alias="ENABLE_NATS_EVENTS")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_dir: str | None = Field(default=None, alias="LOG_DIR")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def qr_secret_effective(self) -> str:
        # generated once per process when QR_SECRET is not supplied
        if self.qr_secret is None:
            self.qr_secret = secrets.token_urlsafe(48)
        return self.qr_secret

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
