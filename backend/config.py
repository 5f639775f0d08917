"""
Configuration management for the newsletter API.
"""
from typing import List
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./newsletter.db"

    # Public URLs (unsubscribe links point at the frontend)
    frontend_url: str = "http://localhost:5173"
    backend_url: str = "http://localhost:8000"

    # Comma-separated CORS origins used outside production
    cors_origins: str = "http://localhost:5173,https://localhost:5173,http://localhost:443,https://localhost:443"

    # Email provider: disabled, smtp, brevo, resend or sendgrid
    email_provider: str = "disabled"
    email_from_address: str = "info@example.com"
    email_from_name: str = "Newsletter"
    email_subject: str = "Welcome to our newsletter!"
    welcome_email_on_subscribe: bool = True

    brevo_api_key: str = ""
    resend_api_key: str = ""
    sendgrid_api_key: str = ""

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""

    # Database change webhook
    webhook_secret: str = ""
    require_webhook_secret: bool = True

    # Rate limiting (per client IP)
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def sqlalchemy_url(self) -> str:
        """Database URL with the postgres:// scheme some providers hand out fixed up."""
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql://", 1)
        return self.database_url

    @property
    def allowed_origins(self) -> List[str]:
        """Origins allowed by CORS for the current environment."""
        raw = self.frontend_url if self.environment == "production" else self.cors_origins
        return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def is_email_configured() -> bool:
    """Check if the selected email provider has the credentials it needs."""
    settings = get_settings()
    provider = settings.email_provider.lower()
    if provider == "smtp":
        return bool(settings.smtp_host and settings.smtp_password)
    if provider == "brevo":
        return bool(settings.brevo_api_key)
    if provider == "resend":
        return bool(settings.resend_api_key)
    if provider == "sendgrid":
        return bool(settings.sendgrid_api_key)
    return False
