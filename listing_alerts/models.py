"""
Data models for Listing Alerts.

Defines canonical dataclasses that all sources normalize into, plus the
alert criteria and the records exchanged with the storage layer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from enum import Enum

from .exceptions import ValidationError


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class SourceName(str, Enum):
    """Supported listing portals."""
    ADONDEVIVIR = "ADONDEVIVIR"
    URBANIA = "URBANIA"
    PROPERATI = "PROPERATI"
    MERCADOLIBRE = "MERCADOLIBRE"


SOURCE_DISPLAY_NAMES: dict[SourceName, str] = {
    SourceName.ADONDEVIVIR: "Adondevivir",
    SourceName.URBANIA: "Urbania",
    SourceName.PROPERATI: "Properati",
    SourceName.MERCADOLIBRE: "Mercado Libre",
}


class Currency(str, Enum):
    PEN = "PEN"
    USD = "USD"


class TransactionType(str, Enum):
    RENT = "RENT"
    BUY = "BUY"


class AlertStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"


class RunState(str, Enum):
    """States of a single alert run."""
    PENDING = "PENDING"
    SCRAPING = "SCRAPING"
    NORMALIZING = "NORMALIZING"
    DEDUPING = "DEDUPING"
    NOTIFYING = "NOTIFYING"
    RECORDING = "RECORDING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


SUPPORTED_CITIES = [
    "Lima",
    "Arequipa",
    "Trujillo",
    "Chiclayo",
    "Piura",
    "Cusco",
    "Iquitos",
    "Huancayo",
    "Tacna",
    "Pucallpa",
]

MAX_KEYWORDS = 20
MAX_PROPERTY_TYPES = 6


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class NormalizedListing:
    """
    Canonical representation of one scraped offer.

    Produced fresh on every run. `canonical_url` has tracking parameters
    stripped so the same unit yields the same string across runs.
    """
    source: SourceName
    canonical_url: str
    title: str
    price: int
    currency: Currency
    transaction_type: TransactionType
    city: str
    fingerprint_hash: str = ""

    # Optional features
    neighborhood: Optional[str] = None
    square_meters: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    parking: Optional[int] = None
    image_url: Optional[str] = None

    scraped_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "source_name": self.source.value,
            "canonical_url": self.canonical_url,
            "title": self.title,
            "price": self.price,
            "currency": self.currency.value,
            "transaction_type": self.transaction_type.value,
            "city": self.city,
            "neighborhood": self.neighborhood,
            "square_meters": self.square_meters,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "parking": self.parking,
            "image_url": self.image_url,
            "fingerprint_hash": self.fingerprint_hash,
            "scraped_at": self.scraped_at.isoformat(),
        }

    def to_summary(self) -> dict:
        """Compact view used by the preview endpoint."""
        return {
            "source": self.source.value,
            "title": self.title,
            "price": self.price,
            "currency": self.currency.value,
            "city": self.city,
            "neighborhood": self.neighborhood,
            "squareMeters": self.square_meters,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "parking": self.parking,
            "url": self.canonical_url,
            "imageUrl": self.image_url,
        }


@dataclass(frozen=True)
class AlertCriteria:
    """
    Search parameters for one alert.

    Immutable for the duration of a run. Enum fields may hold a raw value
    when loaded from storage; `validate()` rejects those.
    """
    transaction_type: TransactionType
    city: str = "Lima"
    neighborhood: Optional[str] = None
    max_price: Optional[int] = None
    min_square_meters: Optional[float] = None
    max_square_meters: Optional[float] = None
    min_bedrooms: Optional[int] = None
    min_parking: Optional[int] = None
    property_types: tuple[str, ...] = ()  # Stored only; every adapter searches departamentos
    keywords_include: tuple[str, ...] = ()
    keywords_exclude: tuple[str, ...] = ()

    def validate(self) -> None:
        """Raise ValidationError if the criteria cannot drive a search."""
        if not isinstance(self.transaction_type, TransactionType):
            raise ValidationError(f"Invalid transaction type: {self.transaction_type!r}")
        if self.city not in SUPPORTED_CITIES:
            raise ValidationError(f"Unsupported city: {self.city!r}")
        if self.neighborhood is not None and len(self.neighborhood) > 100:
            raise ValidationError("Neighborhood is too long")
        if self.max_price is not None and self.max_price <= 0:
            raise ValidationError("max_price must be positive")
        for name in ("min_square_meters", "max_square_meters"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValidationError(f"{name} must be positive")
        if (
            self.min_square_meters is not None
            and self.max_square_meters is not None
            and self.min_square_meters > self.max_square_meters
        ):
            raise ValidationError("min_square_meters is greater than max_square_meters")
        for name in ("min_bedrooms", "min_parking"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} must not be negative")
        if len(self.property_types) > MAX_PROPERTY_TYPES:
            raise ValidationError("Too many property types")
        if len(self.keywords_include) > MAX_KEYWORDS or len(self.keywords_exclude) > MAX_KEYWORDS:
            raise ValidationError("Too many keywords")

    def to_dict(self) -> dict:
        transaction_type = self.transaction_type
        return {
            "transaction_type": getattr(transaction_type, "value", transaction_type),
            "city": self.city,
            "neighborhood": self.neighborhood,
            "max_price": self.max_price,
            "min_square_meters": self.min_square_meters,
            "max_square_meters": self.max_square_meters,
            "min_bedrooms": self.min_bedrooms,
            "min_parking": self.min_parking,
            "property_types": list(self.property_types),
            "keywords_include": list(self.keywords_include),
            "keywords_exclude": list(self.keywords_exclude),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AlertCriteria":
        raw_type = data.get("transaction_type") or data.get("transactionType") or "RENT"
        try:
            transaction_type = TransactionType(str(raw_type).upper())
        except ValueError:
            transaction_type = raw_type  # rejected by validate()
        return cls(
            transaction_type=transaction_type,
            city=data.get("city") or "Lima",
            neighborhood=data.get("neighborhood") or None,
            max_price=data.get("max_price") or None,
            min_square_meters=data.get("min_square_meters") or None,
            max_square_meters=data.get("max_square_meters") or None,
            min_bedrooms=data.get("min_bedrooms") or None,
            min_parking=data.get("min_parking") or None,
            property_types=tuple(data.get("property_types") or ()),
            keywords_include=tuple(data.get("keywords_include") or ()),
            keywords_exclude=tuple(data.get("keywords_exclude") or ()),
        )


@dataclass
class Alert:
    """A saved search re-run on a schedule."""
    alert_id: str
    email: str
    criteria: AlertCriteria
    send_no_results: bool = True
    status: AlertStatus = AlertStatus.ACTIVE
    last_run_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Alert":
        """Create from a row of the alerts table."""
        return cls(
            alert_id=data["id"],
            email=data["email"],
            criteria=AlertCriteria.from_dict(data),
            send_no_results=data.get("send_no_results", True),
            status=AlertStatus(data.get("status", "ACTIVE")),
            last_run_at=_parse_datetime(data.get("last_run_at")),
        )


@dataclass
class ScraperOutcome:
    """Per-source result of one run."""
    source: SourceName
    success: bool
    listings: list[NormalizedListing] = field(default_factory=list)
    error: Optional[str] = None
    duration: float = 0.0  # seconds

    @property
    def searched(self) -> bool:
        """Whether this source counts toward "sources searched"."""
        return self.success and bool(self.listings)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "count": len(self.listings),
            "error": self.error,
            "duration": round(self.duration, 3),
        }


@dataclass
class PersistedListing:
    """Durable record of a listing, keyed by canonical URL."""
    listing_id: str
    canonical_url: str
    fingerprint_hash: str
    source: SourceName
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PersistedListing":
        return cls(
            listing_id=str(data["id"]),
            canonical_url=data["canonical_url"],
            fingerprint_hash=data.get("fingerprint_hash", ""),
            source=SourceName(data["source_name"]),
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class DeliveryRecord:
    """Ledger entry: this alert has already been shown this listing."""
    alert_id: str
    listing_id: str


@dataclass
class AlertRunReport:
    """What happened during one alert's run."""
    alert_id: str
    state: RunState = RunState.PENDING
    outcomes: list[ScraperOutcome] = field(default_factory=list)
    total_scraped: int = 0
    total_matched: int = 0
    new_listings: list[NormalizedListing] = field(default_factory=list)
    notified: bool = False
    error: Optional[str] = None

    @property
    def sources_searched(self) -> list[SourceName]:
        return [outcome.source for outcome in self.outcomes if outcome.searched]


@dataclass
class JobSummary:
    """Response of one job invocation."""
    alerts_processed: int = 0
    emails_sent: int = 0
    errors: list[str] = field(default_factory=list)
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "alertsProcessed": self.alerts_processed,
            "emailsSent": self.emails_sent,
            "errors": self.errors,
            "duration": round(self.duration, 3),
        }
