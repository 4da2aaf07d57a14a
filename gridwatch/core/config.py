from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ADMIN_PASSWORD_HASH = (
    "$2b$12$sdOU8uwfeIt/6CaZUIM6ke71zg30wHn0r3QC4TDA3xHYwQxTVEEXi"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GRIDWATCH_",
        case_sensitive=False,
    )

    env: str = Field(default="development")
    debug: bool = Field(default=False)
    docs_enabled: bool = Field(default=True)

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", pattern=r"^(text|json)$")

    secret_key: str = Field(min_length=32)
    algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=30, ge=1, le=60 * 24 * 30)

    admin_username: str = Field(default="admin", min_length=3, max_length=64)
    admin_password_hash: str = Field(default=DEFAULT_ADMIN_PASSWORD_HASH, min_length=10)

    cors_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])

    topology_source: str = Field(default="data.xml", min_length=1)

    poll_interval_seconds: float = Field(default=5.0, ge=0.25, le=3600.0)
    polling_autostart: bool = Field(default=True)

    historian_batch_size: int = Field(default=10, ge=1, le=500)
    historian_timeout_seconds: float = Field(default=30.0, ge=0.5, le=120.0)
    historian_passthrough_timeout_seconds: float = Field(default=25.0, ge=0.5, le=120.0)
    historian_lag_seconds: float = Field(default=5.0, ge=0.0, le=3600.0)
    historian_window_ms: int = Field(default=1, ge=1, le=60_000)
    historian_max_concurrency: int = Field(default=4, ge=1, le=32)

    nominal_frequency_hz: float = Field(default=60.0, gt=0.0)

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


def load_settings() -> Settings:
    settings = Settings()
    if not settings.cors_origins:
        settings.cors_origins = ["http://localhost:3000", "http://localhost:8000"]
    return settings
