"""
MercadoLibre Inmuebles (Peru) adapter.

Search filters are encoded as path segments
(/departamentos/alquiler/lima/2-dormitorios_desde-60-m2) and pagination
uses an item offset suffix (_Desde_49). Listings are read from detail
pages, where features sit in a specs table keyed by label text and the
currency symbol is rendered apart from the amount.
"""

import logging
from typing import Optional
from urllib.parse import quote, urlencode

from bs4 import BeautifulSoup

from .base import SourceAdapter, format_param, slugify
from ..models import AlertCriteria, SourceName, TransactionType
from ..normalization import clean_text, extract_int, extract_number, strip_diacritics

logger = logging.getLogger(__name__)

RESULTS_PER_PAGE = 48

DEFAULT_FEATURE_LABELS = {
    "squareMeters": ["superficie", "area", "m²", "metros"],
    "bedrooms": ["dormitorio", "habitacion", "recamara"],
    "bathrooms": ["baño", "bano"],
    "parking": ["estacionamiento", "cochera", "garage"],
}


class MercadoLibreAdapter(SourceAdapter):
    """Adapter for inmuebles.mercadolibre.com.pe (detail-page extraction)."""

    source = SourceName.MERCADOLIBRE
    base_url = "https://inmuebles.mercadolibre.com.pe"
    uses_detail_pages = True

    def build_search_url(self, criteria: AlertCriteria, page: int = 1) -> str:
        transaction = "alquiler" if criteria.transaction_type == TransactionType.RENT else "venta"
        url = f"{self.base_url}/departamentos/{transaction}/{slugify(criteria.city or 'Lima')}"

        filters = []
        if criteria.min_bedrooms:
            filters.append(f"{criteria.min_bedrooms}-dormitorios")
        if criteria.min_square_meters:
            filters.append(f"desde-{format_param(criteria.min_square_meters)}-m2")
        if criteria.max_square_meters:
            filters.append(f"hasta-{format_param(criteria.max_square_meters)}-m2")
        if filters:
            url += "/" + "_".join(filters)

        if page > 1:
            url += f"_Desde_{(page - 1) * RESULTS_PER_PAGE + 1}"

        params = []
        if criteria.max_price:
            params.append(("precio-hasta", format_param(criteria.max_price)))
        if criteria.neighborhood:
            params.append(("barrio", criteria.neighborhood))
        if params:
            url += f"?{urlencode(params, quote_via=quote)}"
        return url

    def extract_from_search_page(self, html: str, criteria: AlertCriteria) -> list[str]:
        urls = self._card_urls(html)
        logger.debug(f"[{self.source.value}] Found {len(urls)} detail URLs")
        return urls

    def _price_text(self, soup: BeautifulSoup, page: dict) -> str:
        price_text = self._text(soup, page.get("price"))
        symbol = self._text(soup, page.get("currency"))
        if price_text and symbol and symbol not in price_text:
            price_text = f"{symbol} {price_text}"
        return price_text

    def _detail_features(self, soup: BeautifulSoup, page: dict) -> dict:
        rows = self._spec_rows(soup, page.get("specRows", "tr"))
        labels = page.get("featureLabels", DEFAULT_FEATURE_LABELS)

        square_meters = self._lookup(rows, labels.get("squareMeters", []))
        return {
            "square_meters": extract_number(square_meters) if square_meters else None,
            "bedrooms": extract_int(self._lookup(rows, labels.get("bedrooms", []))),
            "bathrooms": extract_int(self._lookup(rows, labels.get("bathrooms", []))),
            "parking": extract_int(self._lookup(rows, labels.get("parking", []))),
        }

    @staticmethod
    def _spec_rows(soup: BeautifulSoup, selector: str) -> list[tuple[str, str]]:
        """(folded label, value text) pairs from the specs table."""
        rows = []
        for row in soup.select(selector):
            cells = row.find_all(["th", "td"])
            if len(cells) < 2:
                continue
            label = strip_diacritics(clean_text(cells[0].get_text(" ")).lower())
            rows.append((label, clean_text(cells[-1].get_text(" "))))
        return rows

    @staticmethod
    def _lookup(rows: list[tuple[str, str]], keywords: list[str]) -> Optional[str]:
        for keyword in keywords:
            folded = strip_diacritics(keyword.lower())
            for label, value in rows:
                if folded in label and value:
                    return value
        return None
