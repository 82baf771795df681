from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'lottery_user'
    POSTGRES_PASSWORD: str = 'lottery_pass'
    POSTGRES_DB: str = 'lottery_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Overrides the POSTGRES_* parts when set

    # JWT settings
    APP_SECRET_STRING: str = 'your-super-secret-key-here-change-in-production-2024'
    ALGORITHM: str = 'HS256'
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Lottery bins
    LOTTERY_MAX_BIN_COUNT: int = 200
    LOTTERY_BIN_TX_TIMEOUT_MS: int = 30000  # Bulk bin updates may touch up to 200 rows

    # Query metrics
    SLOW_QUERY_THRESHOLD_MS: int = 1000
    N1_DETECTION_WINDOW_MS: int = 100
    N1_DETECTION_THRESHOLD: int = 5
    METRICS_WINDOW_MINUTES: int = 5
    ENABLE_DETAILED_QUERY_LOGGING: bool = False

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
    def detailed_query_logging(self) -> bool:
        return self.ENABLE_DETAILED_QUERY_LOGGING or self.ENVIRONMENT != "production"

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

    @field_validator("ENABLE_DETAILED_QUERY_LOGGING", mode="before")
    @classmethod
    def parse_detailed_logging(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

settings = Settings()
