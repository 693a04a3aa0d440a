from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Built once at startup and handed to the components that need it;
    nothing below the app factory reads configuration on its own.
    """

    # env vars take precedence over .env, empty values are ignored
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite+aiosqlite:///./messagely.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Token signing - required
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    TOKEN_EXPIRE_MINUTES: Optional[int] = Field(default=None, ge=1)

    # Password hashing cost
    BCRYPT_WORK_FACTOR: int = Field(default=12, ge=4, le=31)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file more than once.
    """
    return Settings()
