"""Configuration management for Personifeed."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApplicationConfig(BaseSettings):
    """Application configuration with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="PERSONIFEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///personifeed.db",
        description="Database connection URL"
    )

    # OpenAI Configuration
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key for newsletter generation"
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model used to write newsletters"
    )
    openai_max_tokens: int = Field(
        default=2000,
        description="Token ceiling for one newsletter completion"
    )
    openai_temperature: float = Field(
        default=0.7,
        description="Temperature setting for OpenAI API calls"
    )
    openai_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single completion request"
    )
    openai_max_retries: int = Field(
        default=0,
        description="Client-level retries; failed users are retried on the next run instead"
    )

    # Mail transport
    resend_api_key: str = Field(
        default="",
        description="Resend API key for email delivery"
    )
    resend_base_url: str = Field(
        default="https://api.resend.com",
        description="Base URL of the Resend HTTP API"
    )
    mail_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single outbound email request"
    )

    # Reply addressing
    reply_local_part: str = Field(
        default="reply",
        description="Local part used before the '+' of every reply address"
    )
    reply_domain: str = Field(
        default="mail.personifeed.com",
        description="Domain receiving replies through the inbound parse webhook"
    )

    # Feedback handling
    feedback_history_limit: int = Field(
        default=10,
        description="Number of most recent reply entries included in a prompt"
    )
    max_feedback_length: int = Field(
        default=2000,
        description="Maximum accepted length of a feedback body in characters"
    )

    # Batch run
    max_concurrent_users: int = Field(
        default=10,
        description="Maximum number of users processed at the same time"
    )
    user_task_timeout_seconds: float = Field(
        default=60.0,
        description="Ceiling for generation plus delivery of one user"
    )
    cron_secret: str = Field(
        default="",
        description="Bearer token required by the scheduler trigger endpoint"
    )

    # HTTP server
    host: str = Field(default="0.0.0.0", description="Bind address for the HTTP app")
    port: int = Field(default=8000, description="Bind port for the HTTP app")

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="structured",
        description="Log format: structured or text"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator(
        "feedback_history_limit",
        "max_feedback_length",
        "max_concurrent_users",
        "openai_max_tokens",
    )
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("user_task_timeout_seconds", "openai_timeout_seconds", "mail_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("timeouts must be greater than zero")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("structured", "text"):
            raise ValueError("log_format must be 'structured' or 'text'")
        return v

    @field_validator("reply_domain", "reply_local_part")
    @classmethod
    def validate_address_part(cls, v):
        v = v.strip()
        if not v or "@" in v or "+" in v:
            raise ValueError("address parts must be non-empty and contain neither '@' nor '+'")
        return v

    @property
    def async_database_url(self) -> str:
        """Database URL with an async driver selected for SQLite."""
        if self.database_url.startswith("sqlite:///"):
            return self.database_url.replace("sqlite:///", "sqlite+aiosqlite:///")
        return self.database_url


def load_config() -> ApplicationConfig:
    """Load application configuration from environment and files."""
    return ApplicationConfig()


def get_project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent.parent


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_project_root() / "logs"
    logs_dir.mkdir(exist_ok=True)
    return logs_dir
