# tablecraft/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List
from pathlib import Path
import logging
from functools import lru_cache

# Configure logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    # Application info
    PROJECT_NAME: str = "TableCraft"
    API_V1_STR: str = "/api/v1"
    VERSION: str = "1.0.0"
    DESCRIPTION: str = "Declarative admin table compiler"

    # Runtime environment: local, testing, staging, production
    APP_ENV: str = "production"

    # Set base directory for data files
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    LOGS_DIR: Path = BASE_DIR / "logs"
    PUBLIC_DIR: Path = BASE_DIR / "public"

    # Database connection settings
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "tablecraft"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_ECHO: bool = False

    # Custom database URL (optional)
    DATABASE_URL: Optional[str] = None

    # Local database settings
    LOCAL_DB_FILE: str = "local_data.db"
    USE_LOCAL_DB: bool = False
    FALLBACK_TO_LOCAL: bool = True

    # Redis settings
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_URL: Optional[str] = None
    REDIS_TTL: int = 3600
    ENABLE_REDIS_CACHE: bool = True

    # Rate limiting
    RATE_LIMIT_PER_MINUTE: int = 120
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Pagination settings
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 1000

    # Datatables compiler
    DATATABLES_MODE: str = "legacy"  # legacy | hybrid | refactored
    DATATABLES_PIPELINE_ENABLED: bool = False
    DT_DIFF_TOLERANCE: int = 0

    # Inspector (parity diagnostics)
    INSPECTOR_ENABLED: Optional[bool] = None  # None means auto-detect from APP_ENV
    INSPECTOR_STORAGE_PATH: Optional[Path] = None
    INSPECTOR_MAX_FILES: int = 100
    INSPECTOR_CLEANUP_DAYS: int = 7
    INSPECTOR_MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10 MiB
    INSPECTOR_INCLUDE_TRACE: bool = True
    INSPECTOR_INCLUDE_REQUEST_DATA: bool = True
    INSPECTOR_EXCLUDE_SENSITIVE: bool = True
    INSPECTOR_DEBUG: bool = False

    # CORS settings
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8001
    WORKERS: int = 4
    LOG_LEVEL: str = "info"

    @property
    def is_local(self) -> bool:
        """True for local development and test runs"""
        return self.APP_ENV.lower() in ("local", "testing")

    @property
    def LOCAL_DB_PATH(self) -> Path:
        return self.DATA_DIR / self.LOCAL_DB_FILE

    @property
    def SQLALCHEMY_LOCAL_DATABASE_URI(self) -> str:
        """Build SQLAlchemy database URI for SQLite local backup"""
        return f"sqlite:///{self.LOCAL_DB_PATH}"

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """Build SQLAlchemy database URI for psycopg2"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def REDIS_CONNECTION_STRING(self) -> str:
        """Build Redis connection string"""
        if self.REDIS_URL:
            return self.REDIS_URL

        auth_part = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth_part}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def inspector_storage_dir(self) -> Path:
        """Root directory for parity diagnostic artifacts"""
        if self.INSPECTOR_STORAGE_PATH:
            return Path(self.INSPECTOR_STORAGE_PATH)
        return self.DATA_DIR / "datatable-inspector"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
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
