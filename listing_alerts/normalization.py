"""
Normalization module for Listing Alerts.

Turns raw text pulled out of portal markup into typed values: prices and
currency, numeric features, canonical URLs and fingerprint-ready
addresses. Every helper returns None on unusable input instead of
raising, so callers can drop a candidate without failing a run.
"""

import re
import logging
import unicodedata
from typing import NamedTuple, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from .models import Currency

logger = logging.getLogger(__name__)


# =============================================================================
# PRICES
# =============================================================================

class PriceData(NamedTuple):
    price: int
    currency: Currency


# Currency tokens removed before looking for digits
CURRENCY_TOKENS = re.compile(r"US\$|USD|PEN|SOLES?|S/\.?|\$")
NUMBER_RUN = re.compile(r"\d[\d.,]*")
DECIMAL_TAIL = re.compile(r"[.,]\d{1,2}$")
# "1 500" or "1\u00a0500": a space between digit groups is a thousands separator
GROUP_SPACE = re.compile(r"(?<![\d.,])\d{1,3}(?:\s\d{3})+(?!\d)")


def detect_currency(text: str) -> Currency:
    """Detect currency by symbol or code; soles unless dollars are explicit."""
    upper = text.upper()
    if "USD" in upper or "US$" in upper:
        return Currency.USD
    if "$" in upper and "S/" not in upper:
        return Currency.USD
    return Currency.PEN


def parse_price(text: Optional[str]) -> Optional[PriceData]:
    """
    Parse a price string into an integer amount and currency.

    Examples:
        "S/ 2,500"   -> PriceData(2500, PEN)
        "US$ 1,200"  -> PriceData(1200, USD)
        "USD 1.350"  -> PriceData(1350, USD)
        "S/ 1 500"   -> PriceData(1500, PEN)
        "—"          -> None

    Returns:
        PriceData, or None when no positive amount can be found
    """
    if not text:
        return None

    cleaned = re.sub(r"\s+", " ", text).strip().upper()
    if not cleaned:
        return None

    currency = detect_currency(cleaned)

    numeric = GROUP_SPACE.sub(
        lambda m: re.sub(r"\s", "", m.group(0)), CURRENCY_TOKENS.sub(" ", cleaned)
    )
    match = NUMBER_RUN.search(numeric)
    if not match:
        return None

    digits = match.group(0).rstrip(".,")
    # Drop cents ("2,500.50"); three-digit groups are thousands separators
    digits = DECIMAL_TAIL.sub("", digits)
    digits = re.sub(r"[.,]", "", digits)
    if not digits:
        return None

    price = int(digits)
    if price <= 0:
        return None

    return PriceData(price=price, currency=currency)


def format_price(price: int, currency: Currency) -> str:
    """Format a price for display ("S/ 2,500", "US$ 1,200")."""
    symbol = "US$" if currency == Currency.USD else "S/"
    return f"{symbol} {price:,}"


# =============================================================================
# TEXT & NUMBERS
# =============================================================================

def clean_text(text: Optional[str]) -> str:
    """Clean and normalize text."""
    if not text:
        return ""

    # Remove HTML entities
    text = re.sub(r"&[a-z]+;", " ", text)
    # Remove excessive whitespace
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_address(address: str) -> str:
    """
    Normalize an address for fingerprinting. Never shown to users.

    Lower-cases, strips diacritics and punctuation, collapses whitespace.
    """
    if not address:
        return ""
    text = strip_diacritics(address.lower())
    text = re.sub(r"[^\w\s]", "", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def extract_number(text: Optional[str]) -> Optional[float]:
    """Extract the leading numeric token ("85.5 m²" -> 85.5)."""
    if not text:
        return None
    match = re.search(r"\d+(?:\.\d+)?", text.replace(",", ""))
    return float(match.group(0)) if match else None


def extract_int(text: Optional[str]) -> Optional[int]:
    """Extract the leading integer count ("3 dormitorios" -> 3)."""
    number = extract_number(text)
    return int(number) if number is not None else None


# =============================================================================
# URLS
# =============================================================================

def absolute_url(href: str, base_url: str) -> str:
    """Resolve a relative or protocol-relative href against a portal base URL."""
    href = href.strip()
    if href.startswith("//"):
        return f"https:{href}"
    return urljoin(base_url.rstrip("/") + "/", href)


def canonicalize_url(url: str, base_url: Optional[str] = None) -> str:
    """
    Strip tracking/query parameters and fragments from a listing URL.

    Idempotent: canonicalize_url(canonicalize_url(u)) == canonicalize_url(u).
    """
    url = url.strip()
    if base_url:
        url = absolute_url(url, base_url)
    parts = urlsplit(url)
    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))
