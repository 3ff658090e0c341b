from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Database
    DATABASE_USER: str = "postgres"
    DATABASE_PASSWORD: str = "postgres"
    DATABASE_HOST: str = "localhost"
    DATABASE_PORT: int = 5432
    DATABASE_NAME: str = "ticketing"
    # Full DSN, takes precedence over the parts above (sqlite:// in tests)
    DATABASE_DSN: Optional[str] = None

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_SOCKET_TIMEOUT: float = 2.0

    # Shared secrets
    CRON_SECRET: str = ""
    ADMIN_API_KEY: str = ""

    # Email provider (Resend)
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com"
    EMAIL_FROM_DEFAULT: str = "tickets@example.com"

    # Payments
    STRIPE_SECRET_KEY: str = ""

    SITE_URL: str = "http://localhost:3000"

    # Orders
    ORDER_NUMBER_PREFIX: str = "TKT"
    ORDER_NUMBER_MAX_RETRIES: int = 3

    # Lifecycle sweeps
    LIFECYCLE_BATCH_LIMIT: int = 100
    CART_GRACE_MINUTES: int = 5
    CART_EXPIRY_MINUTES: int = 60 * 24 * 7 # 7 days

    TENANT_SETTINGS_CACHE_TTL: int = 3600

    LOG_LEVEL: str = "INFO"
    # Log every SQL statement (noisy)
    LOG_SQL: bool = False

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}"
    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_DSN:
            return self.DATABASE_DSN
        return f"postgresql+psycopg2://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
