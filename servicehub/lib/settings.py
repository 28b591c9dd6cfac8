"""
Application settings loaded from environment variables.
Uses pydantic-settings for validation and .env file support.
"""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./servicehub.db",
        description="SQLAlchemy connection string (PostgreSQL in production)"
    )

    # JWT (tokens are issued by the external auth service, only verified here)
    jwt_secret: str = Field(
        default="change-me-in-prod",
        description="Secret key for JWT token verification"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_currency: str = Field(default="usd", description="Currency for charges")
    gateway_max_retries: int = Field(
        default=2,
        description="Retries for transient gateway failures before giving up"
    )

    # Remote-call client
    api_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL the booking flow client talks to"
    )
    retry_base_interval: float = Field(
        default=1.0,
        description="Linear backoff interval in seconds between retries"
    )
    max_retries: int = Field(default=2, description="Default retry budget for remote calls")
    request_timeout_seconds: float = Field(default=15.0, description="Per-attempt HTTP timeout")

    # Service region
    service_region_zip_prefix: str = Field(
        default="2",
        description="Leading ZIP digit of the served region"
    )

    # Notifications
    notification_provider: str = Field(
        default="console",
        description="Customer notification provider: console or email"
    )
    smtp_host: str = Field(default="smtp.gmail.com", description="SMTP server host")
    smtp_port: int = Field(default=587, description="SMTP server port")
    smtp_username: str = Field(default="", description="SMTP username/email")
    smtp_password: str = Field(default="", description="SMTP password/app password")
    smtp_from_email: str = Field(default="", description="From email address")
    smtp_from_name: str = Field(default="ServiceHub", description="From name")

    # Application
    app_name: str = Field(default="ServiceHub Backend", description="Application name")
    frontend_base_url: str = Field(
        default="http://localhost:5173",
        description="Origin used for hosted checkout return URLs"
    )
    debug: bool = Field(default=False, description="Debug mode")


# Global settings instance
settings = Settings()
