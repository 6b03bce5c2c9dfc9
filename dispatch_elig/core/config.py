from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "dispatch-eligibility"
    environment: str = "dev"
    log_level: str = "INFO"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    database_command_timeout_seconds: float = 15.0
    dispatch_timezone: str = "UTC"
    default_eligible_limit: int = 100
    max_eligible_limit: int = 1000
    backfill_on_startup: bool = False
    backfill_concurrency: int = 8
    rollover_enabled: bool = False
    rollover_poll_interval_seconds: float = 60.0
    rollover_max_backoff_seconds: float = 900.0
    component_cache_ttl_seconds: float = 300.0
    otel_enabled: bool = True
    otel_service_name: str = "dispatch-eligibility"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="DE_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
