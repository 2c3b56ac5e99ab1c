from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import os


class Settings(BaseSettings):
    # Environment configuration
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Frontend URL (for CORS)
    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:5173")

    # Stripe configuration
    stripe_api_key: str = os.getenv("STRIPE_API_KEY", "")
    stripe_webhook_secret: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET", "")

    # Supabase configuration (service role key, writes bypass RLS)
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")

    # JWT configuration (used by Supabase auth)
    supabase_jwt_secret: str = os.getenv("SUPABASE_JWT_SECRET", "")
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Record sync retry behaviour
    sync_retry_delay_seconds: float = float(os.getenv("SYNC_RETRY_DELAY_SECONDS", "2.0"))
    sync_max_retries: int = int(os.getenv("SYNC_MAX_RETRIES", "3"))

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
