"""
Application configuration.

Every environment variable the service reads is declared here. Values come
from the process environment, then a local ``.env`` file, then the defaults
below.
"""

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = Field(default="sqlite:///clubrides.db")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text", description="json or text")

    # Activity matching
    MATCH_WINDOW_BEFORE_MINUTES: int = Field(default=60, ge=0)
    MATCH_WINDOW_AFTER_MINUTES: int = Field(default=240, ge=0)
    MATCH_DISTANCE_TOLERANCE_PERCENT: float = Field(default=25.0, ge=0.0)
    # Unset disables the meeting-point proximity boost
    MATCH_LOCATION_TOLERANCE_KM: Optional[float] = Field(default=None, gt=0.0)

    # API
    # Comma-separated, e.g. "https://rides.example.org,http://localhost:3000"
    CORS_ORIGINS: str = Field(default="http://localhost:3000")

    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
