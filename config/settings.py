"""Centralized configuration using pydantic-settings. All values are env-configurable."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TRACKER_")

    # Redis
    redis_url: str = "redis://redis:6379/0"
    redis_pool_size: int = 20

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Collection
    collection_interval_ms: int = 60_000
    collector_autostart: bool = True
    max_concurrent_requests: int = 3
    retry_attempts: int = 3
    retry_base_delay_ms: int = 2000
    retry_jitter_ms: int = 250
    batch_delay_ms: int = 500

    # Vendor
    vendor_base_url: str = "https://v2.sparktraffic.com"
    vendor_api_key: str = ""
    vendor_timeout_sec: float = 15.0
    vendor_status_timeout_sec: float = 10.0

    # Aggregation
    timezone: str = "UTC"
    summary_backed_ranges: list[str] = ["7d", "30d"]

    # Retention
    raw_retention_days: int = 90
    summary_retention_days: int = 180
    retention_sweep_interval_sec: int = 21_600  # 6 hours

    # Monitoring
    enable_prometheus: bool = True
    log_level: str = "INFO"
