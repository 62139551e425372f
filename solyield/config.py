from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    # Core
    environment: str = Field(default="dev")
    app_name: str = Field(default="SolYield Field Sync")
    tz_default: str = Field(default="America/Vancouver", alias="TZ_DEFAULT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database
    database_url: str = Field(
        default="sqlite:///./var/solyield.db",
        alias="DATABASE_URL",
        description="Embedded store, e.g. sqlite:///./var/solyield.db",
    )
    auto_create_db: bool = Field(default=True, alias="AUTO_CREATE_DB")

    # Scheduling
    conflict_buffer_min: int = Field(default=5, alias="CONFLICT_BUFFER_MIN")
    user_schedule_prefix: str = Field(default="schedule_user_")

    # Sync
    sync_settle_delay_s: float = Field(default=2.0, alias="SYNC_SETTLE_DELAY_S")
    sync_interval_s: float = Field(default=600.0, alias="SYNC_INTERVAL_S")  # 10 minutes
    remote_sync_url: Optional[str] = Field(default=None, alias="REMOTE_SYNC_URL")
    remote_sync_timeout_s: float = Field(default=30.0, alias="REMOTE_SYNC_TIMEOUT_S")
    simulated_sync_delay_s: float = Field(default=2.0, alias="SIMULATED_SYNC_DELAY_S")
    connectivity_probe_url: Optional[str] = Field(default=None, alias="CONNECTIVITY_PROBE_URL")
    connectivity_probe_interval_s: float = Field(default=30.0, alias="CONNECTIVITY_PROBE_INTERVAL_S")

    # Audit
    audit_secret: str = Field(default="change-me", alias="AUDIT_SECRET")

    # Rate limit
    rate_limit: str = Field(default="100/minute")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


settings = Settings()
