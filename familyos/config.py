from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Postgres settings
    DATABASE_URL: str = "postgresql://localhost:5432/familyos"

    # Redis settings (optional, rate limiter falls back to in-memory)
    REDIS_URL: str | None = None

    # Google Calendar settings
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    CALENDAR_WEBHOOK_URL: str = "http://localhost:8000/api/calendar/webhook"

    # Cron + auth settings
    CRON_SECRET: str | None = None
    JWT_SECRET: str | None = None
    JWT_AUDIENCE: str = "authenticated"

    # Twilio settings
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_PHONE_NUMBER: str | None = None

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # =================================================================
    # BACKGROUND + RATE LIMIT SETTINGS
    # =================================================================
    BACKGROUND_WORKERS: int = 4
    BACKGROUND_QUEUE_SIZE: int = 100
    WEBHOOK_DEADLINE_SECONDS: float = 8.0
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_AGENT_PER_MINUTE: int = 30

    # =================================================================
    # RETENTION WINDOWS
    # =================================================================
    CHANNEL_RENEWAL_WINDOW_DAYS: int = 2
    ACTION_RETENTION_DAYS: int = 30
    INSIGHT_DEDUP_HOURS: int = 24

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def twilio_configured(self) -> bool:
        """True when every Twilio credential needed to send SMS is present."""
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER)

    def cron_secret_required(self) -> bool:
        """Sweep endpoints may run without a secret outside production."""
        return bool(self.CRON_SECRET) or self.environment == "production"

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # Smaller pool for local development
            config.update(
                {
                    "min_size": 2,
                    "max_size": 6,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
