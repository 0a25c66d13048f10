from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'gasledger_user'
    POSTGRES_PASSWORD: str = 'gasledger_pass'
    POSTGRES_DB: str = 'gasledger_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Full URL override (tests use sqlite)
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Redis settings
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # JWT settings
    APP_SECRET_STRING: str = 'your-super-secret-key-here-change-in-production-2024'
    ALGORITHM: str = 'HS256'
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Receivables ledger
    CASH_TOLERANCE: float = 0.01
    EMPTY_CYLINDER_PRICE_RATIO: float = 0.2
    DEFAULT_RECALCULATION_DAYS: int = 7
    MAX_RECALCULATION_DAYS: int = 90
    RECALCULATION_STATEMENT_TIMEOUT_MS: int = 120000
    DUE_SOON_DAYS: int = 3
    DEFAULT_CYLINDER_SIZE: str = '12L'

    # WhatsApp notifications (Evolution API)
    NOTIFICATIONS_ENABLED: bool = False
    WHATSAPP_API_URL: str = 'http://evolution:8080'
    WHATSAPP_API_KEY: str = ''
    WHATSAPP_INSTANCE: str = 'gasledger'
    WHATSAPP_TIMEOUT_SECONDS: float = 10.0
    CURRENCY_SYMBOL: str = '৳'

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

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

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("NOTIFICATIONS_ENABLED", mode="before")
    @classmethod
    def parse_notifications_enabled(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("CASH_TOLERANCE", "EMPTY_CYLINDER_PRICE_RATIO")
    @classmethod
    def non_negative(cls, v):
        if v < 0:
            raise ValueError("must be greater than or equal to zero")
        return v

settings = Settings()
