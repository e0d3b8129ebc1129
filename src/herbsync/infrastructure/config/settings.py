"""Application settings using Pydantic Settings.

Configuration loaded from environment variables and .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """HerbSync application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HERBSYNC_",
        extra="ignore",
    )

    # === Application ===
    app_name: str = "HerbSync"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # === Trefle API ===
    trefle_api_key: SecretStr | None = None
    trefle_base_url: str = "https://trefle.io/api/v1"
    trefle_requests_per_minute: int = 120

    # === Perenual API ===
    perenual_api_key: SecretStr | None = None
    perenual_base_url: str = "https://perenual.com/api"
    perenual_requests_per_minute: int = 60
    perenual_requests_per_day: int | None = 100  # free tier; None for premium keys

    # === HTTP ===
    request_timeout_seconds: float = 10.0

    # === Circuit Breaker ===
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_recovery_timeout: int = 60  # seconds

    # === Retry Policy ===
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 30.0
    retry_jitter: float = 1.0
    retry_max_retry_after: float = 60.0

    # === Progressive Import ===
    import_pages_per_run: int = Field(default=5, ge=1)
    import_page_size: int = Field(default=20, ge=1)
    import_page_delay_seconds: float = 0.5

    # === Enrichment Sync ===
    sync_batch_size: int = Field(default=100, ge=1)
    sync_staleness_days: int = 30
    sync_item_delay_seconds: float = 0.6

    # === Progress Reports ===
    trefle_estimated_total: int = 1_000_000
    perenual_estimated_total: int = 10_000

    # === Scheduler (herbsync serve) ===
    trefle_import_enabled: bool = False
    perenual_import_enabled: bool = False
    import_interval_seconds: float = Field(default=60, gt=0)
    trefle_sync_enabled: bool = True
    perenual_sync_enabled: bool = False
    sync_interval_seconds: float = Field(default=604_800, gt=0)  # weekly
    monitor_enabled: bool = True
    state_sync_interval_seconds: float = Field(default=30, gt=0)

    # === Cross-process Coordination ===
    run_lease_ttl_seconds: float = Field(default=1800, gt=0)

    # === Alerting ===
    alert_cooldown_seconds: int = 300  # 5 minutes
    alert_history_size: int = 200
    alert_check_interval_seconds: int = 30
    alert_closed_warning_trip_threshold: int = 3
    admin_email: str | None = None
    alert_webhook_url: str | None = None

    # === SMTP ===
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: SecretStr | None = None
    email_from: str | None = None

    # === Database ===
    database_url: str = "sqlite+aiosqlite:///./herbsync.db"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.email_from)

    def import_enabled(self, provider_id: str) -> bool:
        return bool(getattr(self, f"{provider_id}_import_enabled", False))

    def sync_enabled(self, provider_id: str) -> bool:
        return bool(getattr(self, f"{provider_id}_sync_enabled", False))

    def estimated_totals(self) -> dict[str, int]:
        return {
            "trefle": self.trefle_estimated_total,
            "perenual": self.perenual_estimated_total,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
