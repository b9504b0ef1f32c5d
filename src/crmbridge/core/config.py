"""Configuration management for the CRM bridge."""

import os
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def setup_logging(level: str = "INFO") -> None:
    """Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def load_environment(env_file: Optional[str] = None) -> None:
    """Load environment variables from .env file.

    Args:
        env_file: Path to .env file. If None, looks for .env in current directory.
    """
    if env_file:
        env_path = Path(env_file)
    else:
        env_path = Path('.env')

    if env_path.exists():
        load_dotenv(env_path)
        logging.info(f"Loaded environment from {env_path}")
    else:
        logging.warning(f"No .env file found at {env_path}")


def get_optional_env(key: str, default: str = "") -> str:
    """Get an optional environment variable."""
    return os.getenv(key, default)


class SmtpSettings(BaseModel):
    """SMTP settings for operator alerts."""
    host: str = "localhost"
    port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = True
    from_email: str = "crmbridge@localhost"


class BridgeSettings(BaseModel):
    """Runtime settings for the sync pipeline."""
    login_url: str = "https://login.salesforce.com"
    api_version: str = "v58.0"

    http_timeout_seconds: float = 30.0
    http_max_attempts: int = Field(3, ge=1)
    http_backoff_factor: float = 1.0

    coalesce_seconds: int = Field(5, ge=0)
    retry_delay_seconds: int = Field(30, ge=0)
    queue_batch_size: int = Field(10, ge=1)
    queue_max_attempts: int = Field(5, ge=1)

    migration_page_size: int = Field(50, ge=1)
    migration_delay_seconds: float = Field(1.0, ge=0)

    state_backend: str = "memory"
    record_source: str = "memory"
    google_cloud_project: Optional[str] = None
    google_cloud_region: str = "us-central1"
    credentials_source: str = "env"

    api_base_url: str = "http://localhost:8000"
    scheduler_service_account: Optional[str] = None

    alert_email_to: str = ""
    alert_window_seconds: int = 3600
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)

    @classmethod
    def from_env(cls) -> "BridgeSettings":
        """Build settings from environment variables."""
        return cls(
            login_url=get_optional_env("SALESFORCE_LOGIN_URL", "https://login.salesforce.com"),
            api_version=get_optional_env("SALESFORCE_API_VERSION", "v58.0"),
            http_timeout_seconds=float(get_optional_env("HTTP_TIMEOUT_SECONDS", "30")),
            http_max_attempts=int(get_optional_env("HTTP_MAX_ATTEMPTS", "3")),
            http_backoff_factor=float(get_optional_env("HTTP_BACKOFF_FACTOR", "1.0")),
            coalesce_seconds=int(get_optional_env("SYNC_COALESCE_SECONDS", "5")),
            retry_delay_seconds=int(get_optional_env("SYNC_RETRY_DELAY_SECONDS", "30")),
            queue_batch_size=int(get_optional_env("SYNC_QUEUE_BATCH_SIZE", "10")),
            queue_max_attempts=int(get_optional_env("SYNC_QUEUE_MAX_ATTEMPTS", "5")),
            migration_page_size=int(get_optional_env("MIGRATION_PAGE_SIZE", "50")),
            migration_delay_seconds=float(get_optional_env("MIGRATION_DELAY_SECONDS", "1.0")),
            state_backend=get_optional_env("STATE_BACKEND", "memory"),
            record_source=get_optional_env("RECORD_SOURCE", "memory"),
            google_cloud_project=get_optional_env("GOOGLE_CLOUD_PROJECT") or None,
            google_cloud_region=get_optional_env("GOOGLE_CLOUD_REGION", "us-central1"),
            credentials_source=get_optional_env("CREDENTIALS_SOURCE", "env"),
            api_base_url=get_optional_env("API_BASE_URL", "http://localhost:8000"),
            scheduler_service_account=get_optional_env("SCHEDULER_SERVICE_ACCOUNT") or None,
            alert_email_to=get_optional_env("ALERT_EMAIL_TO"),
            alert_window_seconds=int(get_optional_env("ALERT_WINDOW_SECONDS", "3600")),
            smtp=SmtpSettings(
                host=get_optional_env("SMTP_HOST", "localhost"),
                port=int(get_optional_env("SMTP_PORT", "587")),
                username=get_optional_env("SMTP_USERNAME"),
                password=get_optional_env("SMTP_PASSWORD"),
                use_tls=get_optional_env("SMTP_USE_TLS", "true").lower() in ("1", "true", "yes"),
                from_email=get_optional_env("SMTP_FROM_EMAIL", "crmbridge@localhost"),
            ),
        )
