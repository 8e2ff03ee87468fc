"""
Listing Alerts - daily apartment listing digests for Peru

Scrapes the major Peruvian real-estate portals for each saved search,
removes listings the subscriber has already seen, and emails a digest
of what is new.

Modules:
- config: Configuration and environment variables
- models: Canonical data models (dataclasses)
- exceptions: Error taxonomy
- fetch: HTTP retrieval with retries, challenge detection and fallback
- sources: Adapters for each listing portal
- normalization: Price, text and URL normalization
- fingerprint: Content-based listing identity
- criteria_matching: Post-scrape criteria filter
- dedup: Three-tier novelty check
- interfaces: Storage and notification contracts
- db: Supabase integration for storage
- notifications: Digest emails
- pipeline: Main orchestration
- scheduler: APScheduler setup for daily runs
- server: Job trigger server
"""

__version__ = "0.1.0"

# Convenient imports
from .models import (
    Alert,
    AlertCriteria,
    AlertRunReport,
    Currency,
    JobSummary,
    NormalizedListing,
    RunState,
    ScraperOutcome,
    SourceName,
    TransactionType,
)
from .exceptions import (
    BotChallengeDetected,
    DuplicateListingError,
    ExtractionError,
    ListingAlertsError,
    NetworkError,
    NotificationError,
    PersistenceError,
    ValidationError,
)
from .normalization import canonicalize_url, normalize_address, parse_price
from .fingerprint import fingerprint
from .fetch import FetchClient, TransportPreferences
from .criteria_matching import CriteriaMatcher, filter_listings
from .dedup import Deduplicator
from .sources import build_adapter_registry
from .pipeline import AlertRunner, preview_scrape, run_job

__all__ = [
    # Models
    "Alert",
    "AlertCriteria",
    "AlertRunReport",
    "Currency",
    "JobSummary",
    "NormalizedListing",
    "RunState",
    "ScraperOutcome",
    "SourceName",
    "TransactionType",
    # Errors
    "ListingAlertsError",
    "NetworkError",
    "BotChallengeDetected",
    "ExtractionError",
    "PersistenceError",
    "DuplicateListingError",
    "NotificationError",
    "ValidationError",
    # Normalization
    "canonicalize_url",
    "normalize_address",
    "parse_price",
    "fingerprint",
    # Fetching & sources
    "FetchClient",
    "TransportPreferences",
    "build_adapter_registry",
    # Matching & dedup
    "CriteriaMatcher",
    "filter_listings",
    "Deduplicator",
    # Pipeline
    "AlertRunner",
    "preview_scrape",
    "run_job",
]
