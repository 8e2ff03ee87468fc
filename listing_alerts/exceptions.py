"""
Exception hierarchy for Listing Alerts.

Failures are handled at the narrowest scope that can absorb them:
a candidate listing, then a source, then a single alert run.
"""


class ListingAlertsError(Exception):
    """Base class for all pipeline errors."""


class NetworkError(ListingAlertsError):
    """Timeout, connection failure or non-2xx response. Retried, then abandoned."""


class BotChallengeDetected(ListingAlertsError):
    """An anti-automation interstitial was served instead of content. Never retried."""


class ExtractionError(ListingAlertsError):
    """A mandatory field (title or price) could not be extracted. The candidate is dropped."""


class PersistenceError(ListingAlertsError):
    """The listing store or delivery ledger failed. Fails the current alert run only."""


class DuplicateListingError(PersistenceError):
    """A concurrent writer created the same canonical URL first."""


class NotificationError(ListingAlertsError):
    """The notification sink failed. Logged; delivery is still recorded."""


class ValidationError(ListingAlertsError):
    """Malformed alert criteria. The alert is skipped for this job."""
