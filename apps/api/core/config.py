"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (e.g. "sqlite://" for tests); otherwise the
    # Postgres URL is assembled from the parts below.
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="cultural_center")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # JWT Authentication - REQUIRED for token signing
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=12 * 60, ge=5)

    # Public URL of the site. Used for invitation links and as the primary
    # trusted origin for CSRF checks.
    APP_BASE_URL: str = Field(default="http://localhost:3000")
    # Extra trusted origins (comma-separated), e.g. "https://www.example.org"
    CSRF_TRUSTED_ORIGINS: Optional[str] = Field(default=None)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Invitations are one-time codes: keep the horizon short.
    INVITATION_TTL_MINUTES: int = Field(default=60, ge=5, le=24 * 60)

    # Request limits
    MAX_PAYLOAD_BYTES: int = Field(default=50_000, ge=1_000)
    PAGINATION_DEFAULT_LIMIT: int = Field(default=50, ge=1)
    PAGINATION_MAX_LIMIT: int = Field(default=500, ge=1)

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    API_RELOAD: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Email Configuration
    EMAIL_ENABLED: bool = Field(default=False)
    SMTP_SERVER: str = Field(default="localhost")
    SMTP_PORT: int = Field(default=587)
    SMTP_USERNAME: Optional[str] = Field(default=None)
    SMTP_PASSWORD: Optional[str] = Field(default=None)
    FROM_EMAIL: str = Field(default="noreply@centroculturalchinocr.com")
    FROM_NAME: str = Field(default="Centro Cultural Chino")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

    @property
    def trusted_origins(self) -> List[str]:
        """APP_BASE_URL plus CSRF_TRUSTED_ORIGINS, in that order."""
        origins = [self.APP_BASE_URL]
        if self.CSRF_TRUSTED_ORIGINS:
            origins.extend(o.strip() for o in self.CSRF_TRUSTED_ORIGINS.split(",") if o.strip())
        return origins


# Global settings instance
settings = Settings()
