from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    SERVICE_NAME: str = "fulfillment-service"
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "fulfillment"
    POSTGRES_USER: str = "fulfillment"
    POSTGRES_PASSWORD: str = "fulfillment"
    DATABASE_URL: Optional[str] = None

    BUSINESS_NAME: str = "SheCares"
    ADMIN_EMAILS: str = "admin@shecares.com"
    EMAIL_FROM: str = "orders@shecares.com"
    EMAIL_API_URL: str = "http://mailer:8000/send"
    EMAIL_API_KEY: Optional[str] = None
    PDF_RENDERER_URL: Optional[str] = None

    # Notification retry policy: fixed attempt cap and fixed backoff
    NOTIFY_MAX_ATTEMPTS: int = 3
    NOTIFY_BACKOFF_SECONDS: float = 2.0
    NOTIFY_TIMEOUT_SECONDS: float = 10.0

    INVOICE_DUE_DAYS: int = 7
    INVOICE_PAYMENT_TERMS: str = "Payment due within 7 days"
    LOW_STOCK_THRESHOLD: int = 10

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def admin_emails(self) -> list[str]:
        return [e.strip() for e in self.ADMIN_EMAILS.split(",") if e.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
