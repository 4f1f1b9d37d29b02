from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    supabase_url: str
    supabase_service_role_key: str
    redis_url: str
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 60
    portpro_api_url: str = "https://api1.app.portpro.io/v1"
    portpro_access_token: str
    portpro_refresh_token: str
    portpro_request_timeout_seconds: float = 15.0
    portpro_webhook_secret: str | None = None
    cron_secret: str | None = None
    slack_webhook_url: str | None = None
    slack_timeout_seconds: float = 5.0
    dedup_ttl_seconds: int = 24 * 60 * 60
    dedup_claim_ttl_seconds: int = 300
    dlq_max_retries: int = 5
    dlq_retention_seconds: int = 7 * 24 * 60 * 60
    dlq_alert_threshold: int = 50
    dlq_retry_workers: int = 4
    reconciliation_page_size: int = 100
    reconciliation_page_delay_seconds: float = 0.5
    reconciliation_time_budget_seconds: float = 300.0
    reconciliation_discrepancy_alert_threshold: int = 20
    webhook_log_retention_days: int = 30
    reconciliation_run_retention_days: int = 90

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


def load_settings() -> Settings:
    """Read and validate configuration once at process start."""
    return Settings()
