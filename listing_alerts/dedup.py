"""
Deduplication module for Listing Alerts.

Decides which scraped listings are new for a given alert, in three tiers:
1. In-batch: repeated canonical URL or fingerprint within one run
2. Persistence: resolve each listing to a stable listing id
   (canonical URL first, then fingerprint; created when unseen)
3. Delivery ledger: new only if (alert, listing) was never recorded

Once a ledger entry exists the listing is never new for that alert again,
even when its URL or price drifts within the fingerprint tolerance.
"""

import logging
from dataclasses import dataclass, field

from .exceptions import DuplicateListingError, PersistenceError
from .interfaces import DeliveryLedger, ListingStore
from .models import NormalizedListing, PersistedListing

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    """Outcome of deduplicating one alert's batch."""
    listings: list[NormalizedListing] = field(default_factory=list)  # After in-batch tier
    new_listings: list[NormalizedListing] = field(default_factory=list)
    listing_ids: dict[str, str] = field(default_factory=dict)  # canonical_url -> listing_id

    @property
    def new_urls(self) -> set[str]:
        return {listing.canonical_url for listing in self.new_listings}


def dedupe_batch(listings: list[NormalizedListing]) -> list[NormalizedListing]:
    """Drop listings whose canonical URL or fingerprint appeared earlier in the batch."""
    seen_urls: set[str] = set()
    seen_fingerprints: set[str] = set()
    unique = []

    for listing in listings:
        if listing.canonical_url in seen_urls:
            continue
        if listing.fingerprint_hash and listing.fingerprint_hash in seen_fingerprints:
            logger.debug(f"Batch duplicate by fingerprint: {listing.canonical_url}")
            continue
        seen_urls.add(listing.canonical_url)
        if listing.fingerprint_hash:
            seen_fingerprints.add(listing.fingerprint_hash)
        unique.append(listing)

    if len(unique) < len(listings):
        logger.info(f"Removed {len(listings) - len(unique)} in-batch duplicates")
    return unique


class Deduplicator:
    """
    Three-tier novelty check against a listing store and delivery ledger.

    Usage:
        result = Deduplicator(store, ledger).dedupe(alert_id, listings)
        result.new_listings  # listings never shown to this alert
    """

    def __init__(self, store: ListingStore, ledger: DeliveryLedger):
        self.store = store
        self.ledger = ledger

    def resolve(self, listing: NormalizedListing) -> PersistedListing:
        """
        Find or create the persisted record for a listing.

        A lost create race (another writer inserted the same canonical URL)
        resolves to the existing record.

        Raises:
            PersistenceError: If the store fails
        """
        existing = self.store.find_by_canonical_url(listing.canonical_url)
        if existing:
            return existing

        if listing.fingerprint_hash:
            existing = self.store.find_by_fingerprint(listing.fingerprint_hash)
            if existing:
                logger.debug(
                    f"Matched {listing.canonical_url} to {existing.canonical_url} by fingerprint"
                )
                return existing

        try:
            return self.store.create(listing)
        except DuplicateListingError:
            existing = self.store.find_by_canonical_url(listing.canonical_url)
            if existing is None:
                raise PersistenceError(
                    f"Listing {listing.canonical_url} reported duplicate but not found"
                )
            return existing

    def dedupe(self, alert_id: str, listings: list[NormalizedListing]) -> DedupResult:
        """
        Run all three tiers for one alert.

        Args:
            alert_id: The alert whose delivery ledger is consulted
            listings: Listings that passed criteria matching

        Returns:
            DedupResult with the batch-unique listings, the new ones and
            the resolved listing id per canonical URL
        """
        result = DedupResult(listings=dedupe_batch(listings))
        new_ids: set[str] = set()

        for listing in result.listings:
            persisted = self.resolve(listing)
            result.listing_ids[listing.canonical_url] = persisted.listing_id

            # Two URLs can resolve to one stored listing; notify it once
            if persisted.listing_id in new_ids:
                continue
            if self.ledger.exists(alert_id, persisted.listing_id):
                continue
            new_ids.add(persisted.listing_id)
            result.new_listings.append(listing)

        logger.info(
            f"Alert {alert_id}: {len(result.new_listings)} new of {len(result.listings)} unique listings"
        )
        return result
