"""
Configuration module for Listing Alerts.

Every setting comes from the environment (a local `.env` is read at
import). Credentials belong in `.env` only, which is git-ignored.
"""

import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

from .models import SourceName

load_dotenv()


def _env_list(name: str, default: str) -> list[str]:
    """Read a comma-separated environment variable into a list."""
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class SupabaseConfig:
    """Where listings, alerts and the delivery ledger are stored."""
    url: str
    key: str  # service role key; the job writes to every table

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.key)

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        return cls(
            url=os.getenv("SUPABASE_URL", ""),
            key=os.getenv("SUPABASE_KEY", ""),
        )


@dataclass
class EmailConfig:
    """Digest delivery settings."""
    provider: str  # smtp | sendgrid
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    sendgrid_api_key: str
    from_email: str
    from_name: str
    subject_prefix: str = "Daily apartment listings for"

    @property
    def uses_sendgrid(self) -> bool:
        return self.provider.strip().lower() == "sendgrid"

    @classmethod
    def from_env(cls) -> "EmailConfig":
        return cls(
            provider=os.getenv("EMAIL_PROVIDER", "smtp"),
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER", ""),
            smtp_password=os.getenv("SMTP_PASSWORD", ""),
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY", ""),
            from_email=os.getenv("FROM_EMAIL", "alerts@listingalerts.pe"),
            from_name=os.getenv("FROM_NAME", "Apartment Finder Alerts"),
            subject_prefix=os.getenv("EMAIL_SUBJECT_PREFIX", "Daily apartment listings for"),
        )


@dataclass
class ScraperConfig:
    """
    Scraping behaviour shared by every source adapter.

    The enabled source list is handed to the pipeline explicitly, so tests
    and single-tenant deployments can narrow it without touching globals.
    """
    # Request settings
    request_timeout: float = 30.0
    max_retries: int = 2
    retry_backoff_base: float = 2.0  # Seconds, doubled per attempt

    # Politeness: random pause between requests and between sources
    min_delay: float = 5.0
    max_delay: float = 10.0

    # Bounds on a single source run
    max_pages: int = 5
    max_listings_per_source: int = 100

    # Bodies shorter than this are treated as interstitials
    min_page_length: int = 512

    # Optional directory with <source>.json files overriding packaged selectors
    selectors_dir: Optional[str] = None

    enabled_sources: list[SourceName] = field(default_factory=lambda: list(SourceName))

    @classmethod
    def from_env(cls) -> "ScraperConfig":
        default_sources = ",".join(source.value for source in SourceName)
        return cls(
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
            max_retries=int(os.getenv("MAX_RETRIES", "2")),
            retry_backoff_base=float(os.getenv("RETRY_BACKOFF_BASE", "2.0")),
            min_delay=float(os.getenv("MIN_DELAY", "5.0")),
            max_delay=float(os.getenv("MAX_DELAY", "10.0")),
            max_pages=int(os.getenv("MAX_PAGES", "5")),
            max_listings_per_source=int(os.getenv("MAX_LISTINGS_PER_SOURCE", "100")),
            min_page_length=int(os.getenv("MIN_PAGE_LENGTH", "512")),
            selectors_dir=os.getenv("SELECTORS_DIR") or None,
            enabled_sources=[
                SourceName(name.upper())
                for name in _env_list("ENABLED_SOURCES", default_sources)
            ],
        )


@dataclass
class AppConfig:
    """Main application configuration."""
    # Shared secret for the job trigger endpoint
    cron_secret: str = ""

    # Public base URL (used in email footers)
    app_base_url: str = "http://localhost:5000"

    # Schedule settings
    timezone: str = "America/Lima"
    daily_run_hour: int = 7

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            cron_secret=os.getenv("CRON_SECRET", ""),
            app_base_url=os.getenv("APP_BASE_URL", "http://localhost:5000"),
            timezone=os.getenv("TIMEZONE", "America/Lima"),
            daily_run_hour=int(os.getenv("DAILY_RUN_HOUR", "7")),
        )


# Global configuration instances (lazy loaded)
_supabase_config: Optional[SupabaseConfig] = None
_email_config: Optional[EmailConfig] = None
_scraper_config: Optional[ScraperConfig] = None
_app_config: Optional[AppConfig] = None


def get_supabase_config() -> SupabaseConfig:
    """Get Supabase configuration (cached)."""
    global _supabase_config
    if _supabase_config is None:
        _supabase_config = SupabaseConfig.from_env()
    return _supabase_config


def get_email_config() -> EmailConfig:
    """Get email configuration (cached)."""
    global _email_config
    if _email_config is None:
        _email_config = EmailConfig.from_env()
    return _email_config


def get_scraper_config() -> ScraperConfig:
    """Get scraper configuration (cached)."""
    global _scraper_config
    if _scraper_config is None:
        _scraper_config = ScraperConfig.from_env()
    return _scraper_config


def get_app_config() -> AppConfig:
    """Get app configuration (cached)."""
    global _app_config
    if _app_config is None:
        _app_config = AppConfig.from_env()
    return _app_config
