"""Application configuration."""

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "safe-delete"
    DEBUG: bool = False

    # Database Settings
    DATABASE_URL: str = Field(validation_alias="SECRET_DATABASE_URL")
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10

    # Protected accounts (comma-separated emails that can never be deleted)
    PROTECTED_EMAILS: str = Field(default="", validate_default=True)

    @field_validator("PROTECTED_EMAILS", mode="after")
    @classmethod
    def parse_protected_emails(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated protected emails or pass through list, dropping blanks."""
        if isinstance(v, list):
            return [email.strip().casefold() for email in v if email.strip()]
        return [email.strip().casefold() for email in v.split(",") if email.strip()]

    # Cascade engine settings
    CASCADE_SCHEMA_PROBE_ENABLED: bool = True  # Consult live schema metadata before each statement
    CASCADE_CONCURRENT_STEPS: bool = False  # Issue the steps of one phase concurrently
    CASCADE_TRANSACTIONAL: bool = False  # Wrap the whole cascade in one transaction (SAVEPOINT per step)
    CASCADE_BATCH_SIZE: int = 500  # Max ids per IN (...) clause
    CASCADE_ERROR_CAUSE_MAX_LENGTH: int = 100  # Truncate surfaced error causes

    @field_validator("CASCADE_BATCH_SIZE", "CASCADE_ERROR_CAUSE_MAX_LENGTH", mode="after")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Ensure batch size and cause length are usable."""
        if v < 1:
            msg = f"Value must be a positive integer, got {v}"
            raise ValueError(msg)
        return v

    # OpenTelemetry Settings
    OTEL_SERVICE_NAME: str = "safe-delete"

    # Logging Settings
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        normalized = v.upper()
        valid_levels = logging.getLevelNamesMapping()
        if normalized not in valid_levels:
            msg = f"Invalid LOG_LEVEL '{v}'. Must be one of: {', '.join(sorted(valid_levels.keys()))}"
            raise ValueError(msg)
        return normalized


settings = Settings()


def require_config(*field_names: str) -> None:
    """
    Validate that required configuration fields are set.

    Args:
        *field_names: Names of required configuration fields

    Raises:
        ValueError: If any required field is missing or None

    Example:
        from safe_delete.core.config import require_config
        require_config("DATABASE_URL")
    """
    missing = []
    for field in field_names:
        value = getattr(settings, field, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)

    if missing:
        msg = f"Required configuration missing: {', '.join(missing)}"
        raise ValueError(msg)
