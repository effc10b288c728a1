"""Application configuration."""
from functools import lru_cache
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

def clean_int_value(v: Any) -> int:
    """Clean integer values from environment variables."""
    if isinstance(v, str):
        # Remove any comments and whitespace
        v = v.split('#')[0].strip()
    return int(v)

def clean_float_value(v: Any) -> float:
    """Clean float values from environment variables."""
    if isinstance(v, str):
        v = v.split('#')[0].strip()
    return float(v)

class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "TuneSync Backend"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None

    # Database settings
    DATABASE_URL: str = "postgresql://localhost:5432/tunesync"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10

    # Spotify settings
    SPOTIFY_CLIENT_ID: Optional[str] = None
    SPOTIFY_CLIENT_SECRET: Optional[str] = None
    SPOTIFY_API_BASE_URL: str = "https://api.spotify.com/v1"
    SPOTIFY_ACCOUNTS_URL: str = "https://accounts.spotify.com/api/token"
    SPOTIFY_REQUEST_TIMEOUT: int = 25
    SPOTIFY_MAX_RETRIES: int = 3
    SPOTIFY_RETRY_BASE_DELAY: float = 1.0

    # Cache settings
    CACHE_DIR: str = "cache"
    CACHE_MAX_AGE_SECONDS: Dict[str, int] = {
        "dashboard": 3600,
        "profile": 86400,
    }

    # Availability gate; seconds before a memoized result is checked again, None to never re-check
    AVAILABILITY_REPROBE_SECONDS: Optional[float] = 300.0

    # Sync settings
    SYNC_PAGE_SIZE: int = 50
    SYNC_FEATURE_BATCH_SIZE: int = 100
    SYNC_INTER_USER_DELAY: float = 2.0
    SYNC_TIME_RANGE: str = "medium_term"

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"  # Allow extra fields in the environment
    )

    # Validators for numeric fields
    _clean_int = field_validator('DATABASE_POOL_SIZE', 'DATABASE_MAX_OVERFLOW',
                                 'SPOTIFY_REQUEST_TIMEOUT', 'SPOTIFY_MAX_RETRIES',
                                 'SYNC_PAGE_SIZE', 'SYNC_FEATURE_BATCH_SIZE',
                                 mode='before')(clean_int_value)
    _clean_float = field_validator('SPOTIFY_RETRY_BASE_DELAY', 'SYNC_INTER_USER_DELAY',
                                   mode='before')(clean_float_value)

    @property
    def async_database_url(self) -> str:
        """Database URL with the async driver selected."""
        url = self.DATABASE_URL
        # Ensure URL starts with postgresql:// for SQLAlchemy
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
