"""
Sources package - Adapters for real-estate listing portals.

Each adapter module handles:
1. Encoding alert criteria in the portal's search URL scheme
2. Paginating search results through the shared FetchClient
3. Extracting NormalizedListings from cards or detail pages
"""

import time
from typing import Callable, Optional

from .base import SourceAdapter, load_selectors
from .adondevivir import AdondevivirAdapter
from .mercadolibre import MercadoLibreAdapter
from .properati import ProperatiAdapter
from .urbania import UrbaniaAdapter
from ..config import ScraperConfig, get_scraper_config
from ..models import SourceName

ADAPTER_CLASSES: dict[SourceName, type[SourceAdapter]] = {
    SourceName.ADONDEVIVIR: AdondevivirAdapter,
    SourceName.URBANIA: UrbaniaAdapter,
    SourceName.PROPERATI: ProperatiAdapter,
    SourceName.MERCADOLIBRE: MercadoLibreAdapter,
}


def build_adapter_registry(
    config: Optional[ScraperConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[SourceName, SourceAdapter]:
    """
    Instantiate one adapter per supported source.

    Adapters hold no per-run state, so a registry can be shared by every
    alert in a job.
    """
    config = config or get_scraper_config()
    return {name: cls(config=config, sleep=sleep) for name, cls in ADAPTER_CLASSES.items()}


__all__ = [
    "SourceAdapter",
    "AdondevivirAdapter",
    "UrbaniaAdapter",
    "ProperatiAdapter",
    "MercadoLibreAdapter",
    "ADAPTER_CLASSES",
    "build_adapter_registry",
    "load_selectors",
]
