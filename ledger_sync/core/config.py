from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from decimal import Decimal
from pydantic import field_validator


class Settings(BaseSettings):
    # Database settings (local ledger)
    DATABASE_URL: str = 'sqlite:///./ledger.db'

    # Redis settings (Celery broker)
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # Reconciliation tolerances
    COLLECTION_EPSILON: Decimal = Decimal('0.01')
    DUPLICATE_CHECK_EPSILON: Decimal = Decimal('0.5')

    # Numbering
    ALLOW_UNMANAGED_NUMBERING: bool = False
    DEFAULT_INVOICE_SERIES: str = 'FACTURA'
    DEFAULT_RECEIPT_SERIES: str = 'CH'

    # Document defaults
    DEFAULT_CURRENCY: str = 'RON'
    DEFAULT_PAYMENT_TERM_DAYS: int = 30

    # Sync
    SYNC_INTERVAL_SECONDS: int = 300
    STALE_SENDING_SECONDS: int = 900  # Recibos en envío más viejos se devuelven a pending
    GATEWAY_FACTORY: Optional[str] = None  # "package.module:callable"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", "ALLOW_UNMANAGED_NUMBERING", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("DEFAULT_PAYMENT_TERM_DAYS")
    @classmethod
    def validate_payment_term(cls, v):
        if v < 0:
            raise ValueError("DEFAULT_PAYMENT_TERM_DAYS no puede ser negativo")
        return v


settings = Settings()
