"""
Invoicing Core - Configuration

All runtime configuration comes from environment variables (or a local
.env file), validated by pydantic-settings:
- datastore and session-token settings
- the email provider credentials and the platform sender address
- the object storage bucket holding rendered invoice documents
- observability (log level, Sentry)
"""

from typing import Dict, List
from functools import lru_cache
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

LOCAL_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
MIN_JWT_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Environment-backed settings, loaded once per process via get_settings()"""

    ENVIRONMENT: str = Field(default="development", description="development, staging or production")
    DEBUG: bool = Field(default=False, description="Expose API docs and verbose request logs")

    # Datastore
    DATABASE_URL: str = Field(default="", description="postgresql+asyncpg:// URL")
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "invoicing"
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_SSLMODE: str = "require"

    # Session tokens are issued upstream, this service only verifies them
    JWT_SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"

    CORS_ORIGINS: str = Field(default="", description="Comma-separated list of allowed origins")

    # Email provider
    EMAIL_API_KEY: str = Field(default="", description="Server credential, used for sending")
    EMAIL_DOMAINS_API_KEY: str = Field(default="", description="Account credential, used for domain management")
    EMAIL_FROM_ADDRESS: str = Field(default="", description="Platform sender address")

    # Object storage for rendered PDF/XML documents
    S3_BUCKET_NAME: str = ""
    S3_ENDPOINT: str = Field(default="", description="Set for S3-compatible stores such as R2 or MinIO")
    S3_REGION: str = "auto"
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_PUBLIC_URL: str = Field(default="", description="Public/CDN base URL stored document references start with")

    SENTRY_DSN: str = ""
    LOG_LEVEL: str = "INFO"

    API_TITLE: str = "Invoicing Core API"
    API_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = (v or "INFO").upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        return self.DEBUG or self.is_development

    @property
    def cors_origins_list(self) -> List[str]:
        """Configured origins; outside production the local frontend is allowed too."""
        origins = []
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

        if not self.is_production:
            origins += [o for o in LOCAL_ORIGINS if o not in origins]

        return origins

    @property
    def domains_api_key(self) -> str:
        return self.EMAIL_DOMAINS_API_KEY or self.EMAIL_API_KEY

    def validate_production_config(self) -> List[str]:
        """Names every missing or unsafe value; empty when the config is usable."""
        required = {
            "EMAIL_API_KEY": self.EMAIL_API_KEY,
            "EMAIL_FROM_ADDRESS": self.EMAIL_FROM_ADDRESS,
            "S3_BUCKET_NAME": self.S3_BUCKET_NAME,
        }
        errors = []

        if not self.DATABASE_URL and not self.POSTGRES_HOST:
            errors.append("DATABASE_URL is required")

        if not self.JWT_SECRET_KEY:
            errors.append("JWT_SECRET_KEY is required")
        elif len(self.JWT_SECRET_KEY) < MIN_JWT_SECRET_LENGTH:
            errors.append(f"JWT_SECRET_KEY should be at least {MIN_JWT_SECRET_LENGTH} characters")

        errors.extend(f"{name} is required" for name, value in required.items() if not value)

        if self.is_production and self.CORS_ORIGINS == "*":
            errors.append("CORS_ORIGINS cannot be '*' in production")
        if self.is_production and self.DEBUG:
            errors.append("DEBUG should be False in production")

        return errors

    def get_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if not (self.POSTGRES_HOST and self.POSTGRES_USER and self.POSTGRES_PASSWORD):
            raise ValueError("No database configuration found. Set DATABASE_URL or POSTGRES_* variables.")

        url = (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )
        return f"{url}?ssl={self.POSTGRES_SSLMODE}" if self.POSTGRES_SSLMODE else url


@lru_cache()
def get_settings() -> Settings:
    """
    Load settings once per process.

    Raises ValueError in production when required values are missing.
    """
    settings = Settings()
    logger.info(f"Environment: {settings.ENVIRONMENT} (debug: {settings.debug_enabled})")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


def get_cors_config() -> dict:
    """Keyword arguments for CORSMiddleware."""
    return {
        "allow_origins": get_settings().cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": ["Authorization", "Content-Type", "Accept", "Origin", "X-Request-ID"],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,
    }


def validate_environment() -> dict:
    """
    Configuration report for startup and the health endpoint.

    Optional values that are unset show up as warnings, never as errors.
    """
    settings = get_settings()

    optional: Dict[str, tuple] = {
        "SENTRY_DSN": (settings.SENTRY_DSN, "Error tracking disabled"),
        "EMAIL_DOMAINS_API_KEY": (settings.EMAIL_DOMAINS_API_KEY, "Domain management uses the sending credential"),
        "S3_PUBLIC_URL": (settings.S3_PUBLIC_URL, "Document references resolved against the storage endpoint"),
    }

    errors = settings.validate_production_config()
    return {
        "valid": not errors,
        "environment": settings.ENVIRONMENT,
        "errors": errors,
        "warnings": [warning for value, warning in optional.values() if not value],
        "variables": {name: ("set" if value else "not set") for name, (value, _) in optional.items()},
    }
