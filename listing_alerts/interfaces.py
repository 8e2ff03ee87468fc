"""
Collaborator contracts used by the pipeline.

The pipeline only talks to storage and notification through these
protocols. `db.Database` and `notifications.EmailNotifier` are the
production implementations; tests substitute in-memory fakes.
"""

from datetime import datetime
from typing import Optional, Protocol

from .models import Alert, NormalizedListing, PersistedListing, SourceName


class ListingStore(Protocol):
    """Every listing ever seen, unique on canonical URL."""

    def find_by_canonical_url(self, url: str) -> Optional[PersistedListing]:
        ...

    def find_by_fingerprint(self, fingerprint_hash: str) -> Optional[PersistedListing]:
        ...

    def create(self, listing: NormalizedListing) -> PersistedListing:
        """
        Raises:
            DuplicateListingError: If the canonical URL already exists
        """
        ...


class DeliveryLedger(Protocol):
    """(alert, listing) pairs already shown to an alert."""

    def exists(self, alert_id: str, listing_id: str) -> bool:
        ...

    def upsert(self, alert_id: str, listing_id: str) -> None:
        """Idempotent; re-inserting an existing pair is a no-op."""
        ...


class AlertRepository(Protocol):

    def list_active(self, alert_id: Optional[str] = None) -> list[Alert]:
        """All active alerts, or just `alert_id` when it is active."""
        ...

    def mark_run(self, alert_id: str, when: datetime) -> None:
        ...


class Notifier(Protocol):
    """Sends digests. Returns False on failure instead of raising."""

    def send_digest(
        self,
        recipient: str,
        new_listings: list[NormalizedListing],
        total_scraped: int,
        sources_searched: list[SourceName],
        city: str = "Lima",
    ) -> bool:
        ...

    def send_no_results(
        self,
        recipient: str,
        sources_searched: list[SourceName],
        city: str = "Lima",
    ) -> bool:
        ...


class AuditLog(Protocol):
    """Append-only, one row per listing per run."""

    def log_run(
        self,
        alert_id: str,
        recipient: str,
        listings: list[NormalizedListing],
        new_urls: set[str],
        emitted_urls: set[str],
    ) -> None:
        ...
