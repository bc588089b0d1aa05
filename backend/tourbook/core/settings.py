from functools import lru_cache
from pathlib import Path
from typing import Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Runtime
    ENVIRONMENT: str = "development"  # "production" hides error details

    # Database
    DB_URL: str = "postgresql://postgres:password@db:5432/toursdb"
    DB_ECHO: bool = False  # Set to True for SQL query logging in development
    DB_AUTO_CREATE: bool = True  # Create missing tables on startup

    # Connection Pool Settings
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    # Query translation
    DEFAULT_PAGE_LIMIT: int = 100
    MAX_PAGE_LIMIT: int = 1000  # 0 disables the cap

    # Rate Limiting
    ENABLE_RATE_LIMITING: bool = True
    RATE_LIMIT_API: str = "100/hour"
    RATE_LIMIT_LOGIN: str = "3/hour"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "app.log"  # empty string logs to console only

    # CORS
    ALLOWED_ORIGINS: Union[list, str] = ["http://localhost:3000", "http://localhost:3001"]

    @field_validator('ALLOWED_ORIGINS', mode='before')
    @classmethod
    def parse_allowed_origins(cls, v):
        """Parse ALLOWED_ORIGINS from comma-separated string or list"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    # Security
    JWT_SECRET: str = "change_me"
    JWT_EXPIRES_IN_MINUTES: int = 90 * 24 * 60
    JWT_COOKIE_EXPIRES_IN_DAYS: int = 90
    PASSWORD_RESET_EXPIRES_MINUTES: int = 10
    BCRYPT_ROUNDS: int = 12

    # Email
    EMAIL_BACKEND: str = "console"  # "console" or "smtp"
    EMAIL_FROM: str = "Tour Booking <hello@tourbook.io>"
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parents[3] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
