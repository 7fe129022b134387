"""
Application Settings

Single source of configuration for the API, Celery workers and beat.
Values come from the environment (or a local .env file) and are cached
per process through get_settings().
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)

    environment: str = "development"
    app_name: str = "MentionRadar"
    log_level: str = "INFO"
    use_json_logging: bool = False
    sentry_dsn: Optional[str] = None
    sentry_traces_sample_rate: float = 0.1

    # Storage
    database_url: str = "sqlite:///./mentionradar.db"
    redis_url: str = "redis://localhost:6379/0"

    # Celery
    celery_broker_url: Optional[str] = None
    celery_result_backend: Optional[str] = None

    # Ingestion
    connector_timeout_seconds: float = 20.0
    stage_result_ttl_seconds: int = 60 * 60 * 24
    stuck_scan_minutes: int = 30

    # Analysis
    analysis_batch_threshold: int = 50
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    ai_request_timeout_seconds: float = 60.0
    dashboard_base_url: str = "http://localhost:3000"

    # Webhooks
    webhook_timeout_seconds: float = 30.0
    webhook_max_attempts: int = 5
    webhook_delivery_retention_days: int = 30
    webhook_retry_batch_size: int = 100

    # Connector credentials; a connector without its credentials is skipped
    reddit_client_id: Optional[str] = None
    reddit_client_secret: Optional[str] = None
    youtube_api_key: Optional[str] = None
    apify_api_token: Optional[str] = None
    producthunt_token: Optional[str] = None
    github_token: Optional[str] = None

    def get_celery_broker_url(self) -> str:
        return self.celery_broker_url or self.redis_url

    def get_celery_result_backend(self) -> str:
        return self.celery_result_backend or self.redis_url

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings"""
    return Settings()
