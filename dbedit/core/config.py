# dbedit/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pathlib import Path
import logging
from functools import lru_cache

# Configure logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    # Application info
    PROJECT_NAME: str = "dbedit"
    VERSION: str = "1.0.0"
    DESCRIPTION: str = "Generic database table editor"

    # Set base directory for data files
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"

    # Database connection settings
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 5  # Default connection pool size
    DB_MAX_OVERFLOW: int = 10  # Additional connections when pool is full
    DB_ECHO: bool = False  # Don't log SQL in production

    # Session store settings
    SESSION_BACKEND: str = "memory"  # "memory" or "redis"
    SESSION_COOKIE_NAME: str = "dbedit_session"
    COOKIE_SECURE: bool = False  # Set to True in production with HTTPS

    # Redis settings
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_URL: Optional[str] = None
    REDIS_TTL: int = 60 * 60 * 24  # Keys of abandoned sessions expire after a day

    # Editor settings
    EDITOR_IDLE_TIMEOUT: int = 900  # Seconds before an unused editor instance is evicted
    ORIGIN_URL_TIMEOUT: int = 3600  # Seconds an evicted editor can still redirect to where it was created
    ACTION_PARAM: str = "a"
    ID_PARAM: str = "id"
    INSTANCE_PARAM: str = "dbedit"
    EDITORS_FILE: Optional[Path] = None

    # Server settings
    HOST: str = "127.0.0.1"
    PORT: int = 8001
    LOG_LEVEL: str = "info"

    # Debug options
    DEBUG: bool = False
    DEV_HOST_PATTERN: str = r"localhost$"  # Hosts that get SQL errors in the response

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """Build SQLAlchemy database URI, defaulting to a local SQLite file"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"sqlite:///{self.DATA_DIR / 'dbedit.db'}"

    @property
    def REDIS_CONNECTION_STRING(self) -> str:
        """Build Redis connection string"""
        if self.REDIS_URL:
            return self.REDIS_URL

        auth_part = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth_part}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


# Cache the settings instance
@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Create settings instance for import
settings = get_settings()
