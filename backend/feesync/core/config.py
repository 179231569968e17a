import json
import os
from typing import Optional
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel


load_dotenv()


class Settings(BaseModel):
    # Supabase
    supabase_url: str | None = os.getenv("SUPABASE_URL")
    supabase_service_role_key: str | None = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    # Amazon Login-with-Amazon (token provider)
    amazon_lwa_token_url: str = os.getenv("AMAZON_LWA_TOKEN_URL", "https://api.amazon.com/auth/o2/token")
    amazon_token_timeout_seconds: float = float(os.getenv("AMAZON_TOKEN_TIMEOUT_SECONDS", "30"))

    # Amazon Selling Partner API (event provider)
    amazon_sp_api_endpoint: str = os.getenv("AMAZON_SP_API_ENDPOINT", "https://sellingpartnerapi-na.amazon.com")
    amazon_sp_api_timeout_seconds: float = float(os.getenv("AMAZON_SP_API_TIMEOUT_SECONDS", "60"))

    # Fallback credentials when no api_connections row exists
    amazon_client_id: Optional[str] = os.getenv("AMAZON_CLIENT_ID")
    amazon_client_secret: Optional[str] = os.getenv("AMAZON_CLIENT_SECRET")
    amazon_refresh_token: Optional[str] = os.getenv("AMAZON_REFRESH_TOKEN")

    # Financial events sync
    finances_batch_days: int = int(os.getenv("FINANCES_BATCH_DAYS", "7"))
    finances_max_results_per_page: int = int(os.getenv("FINANCES_MAX_RESULTS_PER_PAGE", "100"))
    finances_page_delay_seconds: float = float(os.getenv("FINANCES_PAGE_DELAY_SECONDS", "0.3"))
    finances_batch_delay_seconds: float = float(os.getenv("FINANCES_BATCH_DELAY_SECONDS", "30"))
    finances_rate_limit_backoff_seconds: float = float(os.getenv("FINANCES_RATE_LIMIT_BACKOFF_SECONDS", "120"))
    finances_token_freshness_minutes: int = int(os.getenv("FINANCES_TOKEN_FRESHNESS_MINUTES", "25"))
    finances_safety_skew_minutes: int = int(os.getenv("FINANCES_SAFETY_SKEW_MINUTES", "5"))
    finances_flush_chunk_size: int = int(os.getenv("FINANCES_FLUSH_CHUNK_SIZE", "50"))
    finances_max_rate_limit_restarts: int = int(os.getenv("FINANCES_MAX_RATE_LIMIT_RESTARTS", "10"))
    # "skip" moves on to the next batch after an expired token, "retry" restarts the batch
    finances_token_expired_policy: str = os.getenv("FINANCES_TOKEN_EXPIRED_POLICY", "skip")
    # Provider error-body fragments that mean the access token is no longer valid
    finances_token_expiry_markers: list[str] = json.loads(
        os.getenv("FINANCES_TOKEN_EXPIRY_MARKERS", '["TTL exceeded", "expired"]')
    )

    # Redis
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    celery_result_backend: str = os.getenv("CELERY_RESULT_BACKEND", os.getenv("REDIS_URL", "redis://localhost:6379/0"))

    # Scheduled sync
    finances_sync_enabled: bool = os.getenv("FINANCES_SYNC_ENABLED", "true").lower() == "true"
    finances_sync_cron_hours: int = int(os.getenv("FINANCES_SYNC_CRON_HOURS", "2"))
    finances_sync_scheduled_days: int = int(os.getenv("FINANCES_SYNC_SCHEDULED_DAYS", "14"))
    finances_run_lock_ttl_seconds: int = int(os.getenv("FINANCES_RUN_LOCK_TTL_SECONDS", "21600"))
    # Share the single-flight slot across API and worker processes through Redis
    finances_run_lock_enabled: bool = os.getenv("FINANCES_RUN_LOCK_ENABLED", "true").lower() == "true"

    @property
    def has_fallback_credentials(self) -> bool:
        """True when all three env-provided Amazon credentials are set."""
        return bool(self.amazon_client_id and self.amazon_client_secret and self.amazon_refresh_token)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
