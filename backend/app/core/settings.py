"""
Application settings with validation using pydantic-settings.
Validates all required environment variables at startup.
"""
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./smartvision.db",
        description="Async SQLAlchemy URL (postgresql+asyncpg://... in production)",
    )
    DB_POOL_SIZE: int = Field(default=20, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=40, description="Database max overflow connections")
    DB_POOL_RECYCLE: int = Field(default=3600, description="Database connection recycle time (seconds)")

    # Security configuration
    JWT_SECRET: Optional[str] = Field(default=None, description="JWT secret for account tokens (required in production)")
    JWT_EXPIRY_HOURS: int = Field(default=24 * 7, description="Account token lifetime in hours")
    REFERRAL_TOKEN_SECRET: Optional[str] = Field(
        default=None,
        description="Secret for signing attribution cookies (defaults to JWT_SECRET)",
    )

    # CORS configuration
    ALLOWED_ORIGINS: str = Field(default="", description="Comma-separated list of allowed CORS origins")

    # Environment
    ENVIRONMENT: str = Field(default="production", description="Environment: development or production")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Referral program
    PUBLIC_BASE_URL: str = Field(default="http://localhost:3000", description="Base URL used in referral links")
    REFERRAL_LANDING_URL: str = Field(default="/", description="Where referral link visitors are redirected")
    REFERRAL_COOKIE_NAME: str = Field(default="smartvision_referral", description="Attribution cookie name")
    REFERRAL_VALIDITY_DAYS: int = Field(default=30, description="Attribution token lifetime in days")
    REFERRAL_CODE_MAX_ATTEMPTS: int = Field(default=20, ge=1, description="Draws before code generation gives up")
    SIGNUP_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Account inserts retried on referral code conflict")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        if v not in ("development", "production"):
            raise ValueError("ENVIRONMENT must be 'development' or 'production'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    def validate_production_settings(self) -> list[str]:
        """
        Validate that all required settings are present in production.
        Returns list of missing settings.
        """
        errors = []

        if self.ENVIRONMENT == "production":
            if not self.JWT_SECRET:
                errors.append("JWT_SECRET is required in production")
            elif len(self.JWT_SECRET) < 32:
                errors.append("JWT_SECRET must be at least 32 characters in production")
            if not self.ALLOWED_ORIGINS:
                errors.append("ALLOWED_ORIGINS is required in production")
            if self.DATABASE_URL.startswith("sqlite"):
                errors.append("DATABASE_URL must point to a server database in production")

        return errors

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def jwt_secret(self) -> str:
        # Development fallback only; production is rejected above without JWT_SECRET
        return self.JWT_SECRET or "dev-insecure-jwt-secret"

    @property
    def referral_token_secret(self) -> str:
        return self.REFERRAL_TOKEN_SECRET or self.jwt_secret

    @property
    def referral_cookie_max_age(self) -> int:
        """Cookie Max-Age in seconds (2592000 for 30 days)."""
        return self.REFERRAL_VALIDITY_DAYS * 24 * 60 * 60

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins."""
        if not self.ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
        # Validate production settings
        errors = _settings.validate_production_settings()
        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)
    return _settings
