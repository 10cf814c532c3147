"""Application configuration loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Allowed URL schemes for DATABASE_URL (module-level so validators can use it).
VALID_DATABASE_URL_PREFIXES = (
    "postgresql://",
    "postgresql+psycopg2://",
    "postgres://",
    "postgres+psycopg2://",
    "sqlite://",
    "sqlite+pysqlite://",
)


class Settings(BaseSettings):
    """Validated application settings from env and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    APP_ENV: Literal["dev", "prod"] = "dev"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"
    # Comma-separated list of allowed origins; "*" allows any (dev only).
    CORS_ORIGINS: str = "*"

    # SQLite file for local use; PostgreSQL URL for shared deployments.
    DATABASE_URL: str = "sqlite:///./vulnerabilities.db"

    # Candidate data sources, tried in order: manifest first, monolithic document as fallback.
    DATA_SOURCES: str = "public/chunks/manifest.json,public/ui_demo.json"
    SOURCE_REQUEST_TIMEOUT_SEC: float = 60.0

    # Ingestion: rows per atomic store commit
    INGEST_BATCH_SIZE: int = 5000
    # Start a background ingestion on startup when the store is empty.
    INGEST_ON_STARTUP: bool = False

    # Query engine strategy: database aggregation or in-memory reduction
    QUERY_ENGINE: Literal["sql", "memory"] = "sql"
    QUERY_DEFAULT_LIMIT: int = 50
    QUERY_MAX_LIMIT: int = 500
    SUGGEST_DEFAULT_LIMIT: int = 12

    @property
    def data_source_list(self) -> list[str]:
        """DATA_SOURCES split into an ordered candidate list."""
        return [s.strip() for s in self.DATA_SOURCES.split(",") if s.strip()]

    @property
    def cors_origin_list(self) -> list[str]:
        return [s.strip() for s in self.CORS_ORIGINS.split(",") if s.strip()]

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("DATABASE_URL must be set and non-empty")
        if not any(v.strip().startswith(prefix) for prefix in VALID_DATABASE_URL_PREFIXES):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL or SQLite URL (e.g. postgresql:// or sqlite:///)"
            )
        return v.strip()

    @field_validator("DATA_SOURCES")
    @classmethod
    def validate_data_sources(cls, v: str) -> str:
        if not v or not any(part.strip() for part in v.split(",")):
            raise ValueError("DATA_SOURCES must name at least one candidate source")
        return v.strip()

    @field_validator("SOURCE_REQUEST_TIMEOUT_SEC")
    @classmethod
    def validate_source_timeout(cls, v: float) -> float:
        if v <= 0 or v > 600:
            raise ValueError(
                "SOURCE_REQUEST_TIMEOUT_SEC must be greater than 0 and at most 600"
            )
        return v

    @field_validator("INGEST_BATCH_SIZE")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1 or v > 50000:
            raise ValueError("INGEST_BATCH_SIZE must be between 1 and 50000")
        return v

    @field_validator("QUERY_DEFAULT_LIMIT", "QUERY_MAX_LIMIT", "SUGGEST_DEFAULT_LIMIT")
    @classmethod
    def validate_limits(cls, v: int) -> int:
        if v < 1 or v > 10000:
            raise ValueError("query limits must be between 1 and 10000")
        return v


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance (safe to call from dependencies)."""
    return Settings()


settings = get_settings()
