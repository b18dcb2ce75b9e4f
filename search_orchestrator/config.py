from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    app_name: str = 'search_orchestrator'
    app_version: str = '1.0.0'
    log_level: str = 'INFO'

    # Background job processing
    processor_enabled: bool = True
    job_poll_interval_seconds: float = Field(default=30.0, gt=0)
    stuck_job_minutes: float = Field(default=5.0, gt=0)
    job_timeout_seconds: float = Field(default=120.0, gt=0)
    default_max_retries: int = Field(default=3, ge=0)
    job_retention_days: int = Field(default=7, ge=0)

    # Contact and email enrichment
    contact_batch_concurrency: int = Field(default=3, ge=1)
    max_email_contacts: int = Field(default=3, ge=1, le=3)
    tier1_email_threshold: int = Field(default=1, ge=1)

    # HTTP provider adapters
    request_timeout_seconds: float = 8.0
    rate_limit_per_second: int = 10
    provider_api_key: str | None = None
    company_finder_url: str | None = None
    contact_finder_url: str | None = None
    primary_email_finder_url: str | None = None
    secondary_email_finder_url: str | None = None
    tertiary_email_finder_url: str | None = None

    starting_credit_balance: int = 1000


@lru_cache
def get_settings() -> Settings:
    return Settings()
