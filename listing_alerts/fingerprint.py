"""
Content fingerprints for listings.

The canonical URL is the primary identity of a listing. The fingerprint is
the secondary key for re-posted ads whose URL changed: it hashes the
source, the normalized address, the price rounded to the nearest 100 and
the area/bedroom counts.

Known limitation: the hash is coarse. Two distinct small
units with the same address text, rounded price, area and bedrooms will
collide and be treated as one listing.
"""

import hashlib
import math
from typing import Optional, Union

from .models import SourceName
from .normalization import normalize_address

DELIMITER = "|"
PRICE_BUCKET = 100
DIGEST_LENGTH = 32


def round_price(price: int) -> int:
    """Round half-up to the nearest bucket (2549 -> 2500, 2550 -> 2600)."""
    return int(math.floor(price / PRICE_BUCKET + 0.5)) * PRICE_BUCKET


def _format_number(value: Optional[Union[int, float]]) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def fingerprint(
    source: Union[SourceName, str],
    normalized_address: str,
    price: int,
    square_meters: Optional[float] = None,
    bedrooms: Optional[int] = None,
) -> str:
    """
    Derive a stable 32-hex-char identity hash for a listing.

    Args:
        source: Portal the listing came from
        normalized_address: Output of normalize_address() (re-normalized here)
        price: Integer price in the listing's currency
        square_meters: Optional area
        bedrooms: Optional bedroom count

    Returns:
        First 32 hex characters of the SHA-256 digest
    """
    source_value = source.value if isinstance(source, SourceName) else str(source)
    data = DELIMITER.join([
        source_value,
        normalize_address(normalized_address),
        str(round_price(price)),
        _format_number(square_meters),
        _format_number(bedrooms),
    ])
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]
