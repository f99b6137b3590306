# campus_billing/core/config.py - Centralized settings management using Pydantic
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings with validation and type safety"""

    # Application Environment
    ENV: str = Field(default="dev", description="Environment: dev, test, staging, prod")
    DEBUG: bool = Field(default=False, description="Debug mode")
    API_TITLE: str = Field(default="Campus Billing API", description="API title")
    API_VERSION: str = Field(default="1.0.0", description="API version")

    # Database Configuration
    DATABASE_URL: str = Field(..., description="Database connection URL")
    DATABASE_ECHO: bool = Field(default=False, description="Echo SQL queries")
    DATABASE_POOL_SIZE: int = Field(default=5, ge=1, le=100, description="Connection pool size")
    DATABASE_MAX_OVERFLOW: int = Field(default=10, ge=0, le=100, description="Max overflow connections")
    DATABASE_POOL_TIMEOUT: int = Field(default=30, ge=1, le=300, description="Pool timeout in seconds")
    DATABASE_POOL_RECYCLE: int = Field(default=3600, ge=300, description="Pool recycle time in seconds")
    DATABASE_LOCK_TIMEOUT: int = Field(default=30, ge=1, le=300, description="Seconds to wait for a write lock")

    # JWT Configuration
    JWT_SECRET: str = Field(..., min_length=32, description="JWT signing secret")
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60, ge=1, le=10080, description="Access token expiry")
    JWT_ISSUER: str = Field(default="campus-billing", description="JWT issuer")
    JWT_AUDIENCE: str = Field(default="campus-billing-users", description="JWT audience")

    # CORS Configuration
    CORS_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="CORS allowed origins"
    )

    # Billing
    BILLING_CURRENCY: str = Field(default="KES", min_length=3, max_length=3, description="ISO currency code for amounts")
    PAYMENT_METHODS: List[str] = Field(
        default=["cash", "bank_transfer", "card", "mobile_money", "cheque"],
        description="Accepted payment methods"
    )
    RECENT_PAYMENTS_LIMIT: int = Field(default=10, ge=1, le=100, description="Rows returned by the recent payments feed")

    # Side effects
    AUDIT_LOG_ENABLED: bool = Field(default=True, description="Write user_logs rows for ledger mutations")
    CACHE_INVALIDATION_ENABLED: bool = Field(default=True, description="Notify page-cache listeners after mutations")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_REQUESTS: bool = Field(default=True, description="Log every HTTP request")

    # Development Settings
    DEV_SHOW_DOCS: bool = Field(default=True, description="Show API docs in development")
    DEV_LOG_SQL: bool = Field(default=False, description="Log SQL queries in development")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"  # Ignore extra environment variables

    @field_validator("ENV")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed_envs = ["dev", "development", "test", "staging", "prod", "production"]
        if v.lower() not in allowed_envs:
            raise ValueError(f"ENV must be one of: {allowed_envs}")
        return v.lower()

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters long")
        return v

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        allowed_prefixes = (
            "postgresql://",
            "postgresql+psycopg2://",
            "postgresql+psycopg://",
            "sqlite:///",
        )
        if not v.startswith(allowed_prefixes):
            raise ValueError("DATABASE_URL must be a valid database connection string (postgresql, postgresql+psycopg, postgresql+psycopg2, or sqlite)")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed_levels}")
        return v.upper()

    @field_validator("CORS_ORIGINS", "PAYMENT_METHODS", mode="before")
    @classmethod
    def parse_csv_list(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("PAYMENT_METHODS")
    @classmethod
    def normalize_payment_methods(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("At least one payment method must be configured")
        return [method.lower() for method in v]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.ENV in ["dev", "development", "test"]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.ENV in ["prod", "production"]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    def get_cors_config(self) -> dict:
        """Get CORS configuration for FastAPI"""
        return {
            "allow_origins": self.CORS_ORIGINS,
            "allow_credentials": True,
            "allow_methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "Accept", "Origin"],
        }


# Create settings instance with validation
try:
    settings = Settings()
except Exception as e:
    print(f"Configuration error: {e}")
    print("Please check your .env file and environment variables")
    raise


def validate_critical_settings(current: Optional[Settings] = None):
    """Validate critical settings that must be present"""
    current = current or settings
    critical_errors = []

    if not current.DATABASE_URL:
        critical_errors.append("DATABASE_URL is required")

    if current.is_production and current.DATABASE_URL.startswith("sqlite"):
        critical_errors.append("SQLite is not supported in production; use PostgreSQL")

    if current.is_production and current.DEBUG:
        critical_errors.append("DEBUG must be disabled in production")

    if critical_errors:
        error_msg = "Critical configuration errors:\n" + "\n".join(f"  - {error}" for error in critical_errors)
        raise ValueError(error_msg)


# Validate on import
validate_critical_settings()

__all__ = ["settings", "Settings", "validate_critical_settings"]
