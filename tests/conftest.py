"""Shared fixtures and in-memory collaborators."""

import itertools
from datetime import datetime
from typing import Optional

import pytest

from listing_alerts.config import AppConfig, ScraperConfig
from listing_alerts.exceptions import DuplicateListingError, NetworkError
from listing_alerts.fetch import FetchClient, Transport
from listing_alerts.fingerprint import fingerprint
from listing_alerts.models import (
    Alert,
    AlertCriteria,
    Currency,
    NormalizedListing,
    PersistedListing,
    SourceName,
    TransactionType,
)
from listing_alerts.normalization import normalize_address


def no_sleep(seconds: float) -> None:
    pass


def make_listing(
    slug: str,
    price: int = 2500,
    source: SourceName = SourceName.URBANIA,
    title: Optional[str] = None,
    square_meters: Optional[float] = 80.0,
    bedrooms: Optional[int] = 2,
    neighborhood: Optional[str] = "Miraflores",
    parking: Optional[int] = None,
) -> NormalizedListing:
    """Build a fingerprinted listing the way adapters do."""
    title = title or f"Departamento {slug}"
    address = normalize_address(f"Lima {neighborhood or ''} {title}")
    return NormalizedListing(
        source=source,
        canonical_url=f"https://urbania.pe/inmueble/{slug}",
        title=title,
        price=price,
        currency=Currency.PEN,
        transaction_type=TransactionType.RENT,
        city="Lima",
        neighborhood=neighborhood,
        square_meters=square_meters,
        bedrooms=bedrooms,
        parking=parking,
        fingerprint_hash=fingerprint(source, address, price, square_meters, bedrooms),
    )


# =============================================================================
# FETCH FAKES
# =============================================================================

class FakeTransport(Transport):
    """Serves canned bodies per URL; anything else is a network error."""

    def __init__(self, name: str = "requests", pages: Optional[dict] = None, fail_all: bool = False):
        self.name = name
        self.pages = pages or {}
        self.fail_all = fail_all
        self.calls: list[str] = []

    def get(self, url: str, headers: dict, timeout: float) -> str:
        self.calls.append(url)
        if self.fail_all or url not in self.pages:
            raise NetworkError(f"no route to {url}")
        body = self.pages[url]
        if isinstance(body, list):
            body = body.pop(0)
        if isinstance(body, Exception):
            raise body
        return body


class FakeAdapter:
    """Stands in for a SourceAdapter in pipeline tests."""

    def __init__(self, source: SourceName, listings=None, error: Optional[Exception] = None):
        self.source = source
        self.listings = listings or []
        self.error = error
        self.calls = 0

    def scrape(self, criteria, client, preference=None):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.listings)


# =============================================================================
# STORAGE & NOTIFICATION FAKES
# =============================================================================

class InMemoryListingStore:

    def __init__(self):
        self.by_url: dict[str, PersistedListing] = {}
        self._ids = itertools.count(1)
        self.fail_with: Optional[Exception] = None
        self.race_on_create: set[str] = set()

    def find_by_canonical_url(self, url):
        if self.fail_with:
            raise self.fail_with
        return self.by_url.get(url)

    def find_by_fingerprint(self, fingerprint_hash):
        for persisted in self.by_url.values():
            if persisted.fingerprint_hash == fingerprint_hash:
                return persisted
        return None

    def create(self, listing):
        if listing.canonical_url in self.race_on_create:
            # Another writer wins the insert between lookup and create
            self.race_on_create.discard(listing.canonical_url)
            self._insert(listing)
            raise DuplicateListingError(listing.canonical_url)
        if listing.canonical_url in self.by_url:
            raise DuplicateListingError(listing.canonical_url)
        return self._insert(listing)

    def _insert(self, listing):
        persisted = PersistedListing(
            listing_id=str(next(self._ids)),
            canonical_url=listing.canonical_url,
            fingerprint_hash=listing.fingerprint_hash,
            source=listing.source,
        )
        self.by_url[listing.canonical_url] = persisted
        return persisted


class InMemoryLedger:

    def __init__(self):
        self.pairs: set[tuple[str, str]] = set()
        self.upserts = 0

    def exists(self, alert_id, listing_id):
        return (alert_id, listing_id) in self.pairs

    def upsert(self, alert_id, listing_id):
        self.upserts += 1
        self.pairs.add((alert_id, listing_id))


class InMemoryAlertRepository:

    def __init__(self, alerts=None):
        self.alerts: list[Alert] = list(alerts or [])
        self.runs: dict[str, datetime] = {}

    def list_active(self, alert_id=None):
        active = [a for a in self.alerts if a.status.value == "ACTIVE"]
        if alert_id:
            return [a for a in active if a.alert_id == alert_id]
        return active

    def mark_run(self, alert_id, when):
        self.runs[alert_id] = when


class RecordingNotifier:

    def __init__(self, result: bool = True, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.digests: list[dict] = []
        self.no_results: list[dict] = []

    def send_digest(self, recipient, new_listings, total_scraped, sources_searched, city="Lima"):
        self.digests.append({
            "recipient": recipient,
            "new_listings": list(new_listings),
            "total_scraped": total_scraped,
            "sources_searched": list(sources_searched),
        })
        if self.error:
            raise self.error
        return self.result

    def send_no_results(self, recipient, sources_searched, city="Lima"):
        self.no_results.append({"recipient": recipient, "sources_searched": list(sources_searched)})
        if self.error:
            raise self.error
        return self.result


class RecordingAuditLog:

    def __init__(self):
        self.runs: list[dict] = []

    def log_run(self, alert_id, recipient, listings, new_urls, emitted_urls):
        self.runs.append({
            "alert_id": alert_id,
            "urls": [l.canonical_url for l in listings],
            "new_urls": set(new_urls),
            "emitted_urls": set(emitted_urls),
        })


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fast_config():
    """Scraper config with no waiting and no minimum page length."""
    return ScraperConfig(
        min_delay=0,
        max_delay=0,
        retry_backoff_base=0,
        max_retries=2,
        min_page_length=0,
        max_pages=5,
        max_listings_per_source=100,
    )


@pytest.fixture
def app_config():
    return AppConfig(cron_secret="s3cret", app_base_url="https://alerts.example.pe")


@pytest.fixture
def rent_criteria():
    return AlertCriteria(transaction_type=TransactionType.RENT, city="Lima", max_price=3000)


@pytest.fixture
def alert(rent_criteria):
    return Alert(alert_id="alert-1", email="ana@example.com", criteria=rent_criteria)


@pytest.fixture
def store():
    return InMemoryListingStore()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit_log():
    return RecordingAuditLog()


@pytest.fixture
def offline_client(fast_config):
    """FetchClient whose only transport always fails."""
    return FetchClient(fast_config, transports=[FakeTransport(fail_all=True)], sleep=no_sleep)
