"""
Configuration module for Contract Desk.

Handles all configuration through environment variables with secure defaults.
Never stores sensitive data directly in code.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv


# Load environment variables from .env file
load_dotenv()


@dataclass(frozen=True)
class StoreConfig:
    """Configuration for the relational store (Supabase PostgREST API)."""

    supabase_url: str = field(
        default_factory=lambda: os.getenv("SUPABASE_URL", "")
    )
    # Service role key: the service scopes every query by tenant itself
    supabase_service_key: str = field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY", "")
    )

    # Request timeout in seconds
    request_timeout: int = field(
        default_factory=lambda: int(os.getenv("REQUEST_TIMEOUT", "30"))
    )
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("STORE_MAX_RETRIES", "3"))
    )

    @property
    def rest_url(self) -> str:
        """Base URL of the PostgREST endpoint."""
        return f"{self.supabase_url.rstrip('/')}/rest/v1"


@dataclass(frozen=True)
class EmailConfig:
    """
    Configuration for notification emails sent via SMTP.

    Defaults target Zoho Mail; any STARTTLS-capable provider works.
    """

    # SMTP settings
    smtp_host: str = field(
        default_factory=lambda: os.getenv("SMTP_HOST", "smtp.zoho.com")
    )
    smtp_port: int = field(
        default_factory=lambda: int(os.getenv("SMTP_PORT", "587"))
    )
    smtp_username: str = field(
        default_factory=lambda: os.getenv("SMTP_USERNAME", "")
    )
    smtp_password: str = field(
        default_factory=lambda: os.getenv("SMTP_PASSWORD", "")
    )
    smtp_use_tls: bool = field(
        default_factory=lambda: os.getenv("SMTP_USE_TLS", "true").lower() == "true"
    )

    # Sender settings
    from_email: str = field(
        default_factory=lambda: os.getenv("FROM_EMAIL", "")
    )
    from_name: str = field(
        default_factory=lambda: os.getenv("FROM_NAME", "Contract Desk")
    )

    # Operational mailbox that receives every new ticket with full context
    admin_notification_email: str = field(
        default_factory=lambda: os.getenv("ADMIN_NOTIFICATION_EMAIL", "")
    )

    # Portal link used in email call-to-action buttons
    portal_url: str = field(
        default_factory=lambda: os.getenv("PORTAL_URL", "http://localhost:3000")
    )

    @property
    def is_configured(self) -> bool:
        """Check if SMTP credentials are present."""
        return bool(self.smtp_username and self.smtp_password)


@dataclass(frozen=True)
class LimitConfig:
    """Configuration for contract item limit tracking."""

    # All period boundaries are computed in this zone
    period_timezone: str = field(
        default_factory=lambda: os.getenv("PERIOD_TIMEZONE", "UTC")
    )
    near_limit_percent: float = field(
        default_factory=lambda: float(os.getenv("NEAR_LIMIT_PERCENT", "80"))
    )
    notification_workers: int = field(
        default_factory=lambda: int(os.getenv("NOTIFICATION_WORKERS", "4"))
    )


@dataclass(frozen=True)
class OutputConfig:
    """Configuration for exported usage reports."""

    output_dir: Path = field(
        default_factory=lambda: Path(os.getenv("OUTPUT_DIR", "./output"))
    )
    report_filename: str = field(
        default_factory=lambda: os.getenv(
            "USAGE_REPORT_FILENAME",
            "contract_usage_report.xlsx"
        )
    )

    @property
    def report_path(self) -> Path:
        """Get full path to the report file."""
        return self.output_dir / self.report_filename


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration aggregating all config sections."""

    store: StoreConfig = field(default_factory=StoreConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    limits: LimitConfig = field(default_factory=LimitConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Logging level
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of errors.

        Email settings are optional: without them notifications are skipped.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        if not self.store.supabase_url:
            errors.append("SUPABASE_URL is required")
        if not self.store.supabase_service_key:
            errors.append("SUPABASE_SERVICE_KEY is required")
        if self.store.max_retries < 1:
            errors.append("STORE_MAX_RETRIES must be at least 1")

        try:
            ZoneInfo(self.limits.period_timezone)
        except (KeyError, ValueError):
            errors.append(
                f"PERIOD_TIMEZONE '{self.limits.period_timezone}' is not a known time zone"
            )

        if not 0 < self.limits.near_limit_percent <= 100:
            errors.append("NEAR_LIMIT_PERCENT must be between 0 and 100")

        if self.email.is_configured and not self.email.from_email:
            errors.append("FROM_EMAIL is required when SMTP is configured")

        return errors


def get_config() -> AppConfig:
    """
    Get application configuration.

    Returns:
        AppConfig instance with all settings loaded from environment.
    """
    return AppConfig()
