"""
Criteria Matching module for Listing Alerts.

Portals ignore some of the filters encoded in search URLs (Urbania drops
them entirely to avoid redirects), so every collected listing is checked
again against the alert's criteria before deduplication.

A listing missing an optional value (area, bedrooms, parking) is never
excluded for lacking it.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .models import AlertCriteria, NormalizedListing
from .normalization import strip_diacritics

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """Outcome of checking one listing against one criteria set."""
    listing: NormalizedListing
    is_match: bool
    reasons: list[str] = field(default_factory=list)  # Why it was rejected


def _fold(text: str) -> str:
    return strip_diacritics(text.lower())


def searchable_text(listing: NormalizedListing) -> str:
    """Text that keyword filters are applied to."""
    parts = [listing.title, listing.neighborhood, listing.city]
    return _fold(" ".join(p for p in parts if p))


class CriteriaMatcher:
    """
    Checks listings against alert criteria.

    Usage:
        matcher = CriteriaMatcher(criteria)
        kept = matcher.filter(listings)
    """

    def __init__(self, criteria: AlertCriteria):
        self.criteria = criteria

    def filter(self, listings: list[NormalizedListing]) -> list[NormalizedListing]:
        """Return the listings that satisfy the criteria, preserving order."""
        kept = []
        for listing in listings:
            result = self.match(listing)
            if result.is_match:
                kept.append(listing)
            else:
                logger.debug(f"Filtered {listing.canonical_url}: {'; '.join(result.reasons)}")

        logger.info(f"Criteria kept {len(kept)}/{len(listings)} listings")
        return kept

    def match(self, listing: NormalizedListing) -> MatchResult:
        reasons: list[str] = []
        c = self.criteria
        text = searchable_text(listing)

        # At least one include keyword must appear
        if c.keywords_include:
            if not any(_fold(k) in text for k in c.keywords_include if k):
                reasons.append("no include keyword")

        # No exclude keyword may appear
        excluded = [k for k in c.keywords_exclude if k and _fold(k) in text]
        if excluded:
            reasons.append(f"excluded keyword: {excluded[0]}")

        if c.max_price is not None and listing.price > c.max_price:
            reasons.append(f"price {listing.price} > {c.max_price}")

        self._check_min(listing.square_meters, c.min_square_meters, "area", reasons)
        if c.max_square_meters is not None and listing.square_meters is not None:
            if listing.square_meters > c.max_square_meters:
                reasons.append(f"area {listing.square_meters} > {c.max_square_meters}")

        self._check_min(listing.bedrooms, c.min_bedrooms, "bedrooms", reasons)
        self._check_min(listing.parking, c.min_parking, "parking", reasons)

        return MatchResult(listing=listing, is_match=not reasons, reasons=reasons)

    @staticmethod
    def _check_min(value, minimum: Optional[float], label: str, reasons: list[str]) -> None:
        if minimum is None or value is None:
            return
        if value < minimum:
            reasons.append(f"{label} {value} < {minimum}")


def filter_listings(
    listings: list[NormalizedListing],
    criteria: AlertCriteria,
) -> list[NormalizedListing]:
    """
    Convenience function to filter listings.

    Args:
        listings: Listings collected from all sources
        criteria: The alert's criteria

    Returns:
        Listings that match
    """
    return CriteriaMatcher(criteria).filter(listings)
