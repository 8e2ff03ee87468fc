"""
Supabase database integration module.

Handles all persistence for the alert pipeline:
- Listings seen across all runs (identity by canonical URL / fingerprint)
- The per-alert delivery ledger
- Alerts and their last-run timestamps
- The append-only listing audit log

Tables required (see setup_supabase.sql):
- listings: unique canonical_url, indexed fingerprint_hash
- alert_listings: unique (alert_id, listing_id)
- alerts: saved searches with flat criteria columns
- listing_log: one row per listing per alert run
"""

import logging
from datetime import datetime
from typing import Optional

from postgrest.exceptions import APIError
from supabase import Client, create_client

from .config import get_supabase_config
from .exceptions import DuplicateListingError, PersistenceError
from .models import (
    Alert,
    AlertStatus,
    NormalizedListing,
    PersistedListing,
    utc_now,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class Database:
    """
    Supabase database client wrapper.

    Implements the ListingStore, DeliveryLedger, AlertRepository and
    AuditLog contracts used by the pipeline.
    """

    def __init__(self, client: Optional[Client] = None):
        """
        Args:
            client: Pre-built Supabase client; created from SUPABASE_URL and
                SUPABASE_KEY when omitted

        Raises:
            PersistenceError: If no client is given and credentials are missing
        """
        if client is None:
            config = get_supabase_config()
            if not config.is_configured:
                raise PersistenceError("SUPABASE_URL and SUPABASE_KEY must be set")
            client = create_client(config.url, config.key)
        self._client: Client = client

    @property
    def client(self) -> Client:
        """Get the Supabase client."""
        return self._client

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except APIError as e:
            raise PersistenceError(f"{action} failed: {e.message}") from e

    # =========================================================================
    # LISTING OPERATIONS
    # =========================================================================

    def find_by_canonical_url(self, url: str) -> Optional[PersistedListing]:
        result = self._execute(
            self._client.table("listings").select("*").eq("canonical_url", url).limit(1),
            "find listing by url",
        )
        return PersistedListing.from_dict(result.data[0]) if result.data else None

    def find_by_fingerprint(self, fingerprint_hash: str) -> Optional[PersistedListing]:
        result = self._execute(
            self._client.table("listings")
            .select("*")
            .eq("fingerprint_hash", fingerprint_hash)
            .order("created_at")
            .limit(1),
            "find listing by fingerprint",
        )
        return PersistedListing.from_dict(result.data[0]) if result.data else None

    def create(self, listing: NormalizedListing) -> PersistedListing:
        """
        Insert a newly seen listing.

        Raises:
            DuplicateListingError: If another writer created the same
                canonical URL first
            PersistenceError: On any other failure
        """
        try:
            result = self._client.table("listings").insert(listing.to_dict()).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise DuplicateListingError(listing.canonical_url) from e
            raise PersistenceError(f"create listing failed: {e.message}") from e

        persisted = PersistedListing.from_dict(result.data[0])
        logger.debug(f"Created listing {persisted.listing_id}: {listing.canonical_url}")
        return persisted

    # =========================================================================
    # DELIVERY LEDGER
    # =========================================================================

    def exists(self, alert_id: str, listing_id: str) -> bool:
        result = self._execute(
            self._client.table("alert_listings")
            .select("alert_id")
            .eq("alert_id", alert_id)
            .eq("listing_id", listing_id)
            .limit(1),
            "ledger lookup",
        )
        return bool(result.data)

    def upsert(self, alert_id: str, listing_id: str) -> None:
        self._execute(
            self._client.table("alert_listings").upsert(
                {"alert_id": alert_id, "listing_id": listing_id, "emailed_at": utc_now().isoformat()},
                on_conflict="alert_id,listing_id",
                ignore_duplicates=True,
            ),
            "ledger upsert",
        )

    # =========================================================================
    # ALERT OPERATIONS
    # =========================================================================

    def list_active(self, alert_id: Optional[str] = None) -> list[Alert]:
        """
        Get active alerts.

        Args:
            alert_id: Restrict to this alert (empty list if it is not active)
        """
        query = self._client.table("alerts").select("*").eq("status", AlertStatus.ACTIVE.value)
        if alert_id:
            query = query.eq("id", alert_id)
        result = self._execute(query, "list active alerts")

        alerts = []
        for row in result.data:
            try:
                alerts.append(Alert.from_dict(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed alert row {row.get('id')}: {e}")
        return alerts

    def mark_run(self, alert_id: str, when: datetime) -> None:
        self._execute(
            self._client.table("alerts").update({"last_run_at": when.isoformat()}).eq("id", alert_id),
            "mark alert run",
        )

    def set_alert_status(self, alert_id: str, status: AlertStatus) -> None:
        """Pause, resume or stop an alert."""
        self._execute(
            self._client.table("alerts").update({"status": status.value}).eq("id", alert_id),
            "update alert status",
        )
        logger.info(f"Alert {alert_id} status -> {status.value}")

    # =========================================================================
    # AUDIT LOG
    # =========================================================================

    def log_run(
        self,
        alert_id: str,
        recipient: str,
        listings: list[NormalizedListing],
        new_urls: set[str],
        emitted_urls: set[str],
    ) -> None:
        """Append one row per listing seen in this run."""
        if not listings:
            return

        logged_at = utc_now().isoformat()
        rows = [
            {
                "logged_at": logged_at,
                "alert_id": alert_id,
                "email": recipient,
                "source_name": listing.source.value,
                "canonical_url": listing.canonical_url,
                "title": listing.title,
                "price": listing.price,
                "currency": listing.currency.value,
                "neighborhood": listing.neighborhood,
                "square_meters": listing.square_meters,
                "bedrooms": listing.bedrooms,
                "is_new_for_alert": listing.canonical_url in new_urls,
                "emailed_this_run": listing.canonical_url in emitted_urls,
            }
            for listing in listings
        ]
        self._execute(self._client.table("listing_log").insert(rows), "audit log insert")
        logger.info(f"Logged {len(rows)} listings for alert {alert_id}")


# Global database instance (lazy loaded)
_db: Optional[Database] = None


def get_db() -> Database:
    """Get database instance (singleton)."""
    global _db
    if _db is None:
        _db = Database()
    return _db
