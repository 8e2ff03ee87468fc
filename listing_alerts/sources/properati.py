"""
Properati.com.pe adapter.

Cards are <article class="snippet" data-url="..."> with data-test
attributes for every feature, so listings come straight from the search
page. Pagination is a path segment (/s/lima/departamento/alquiler/2) and
filters are query parameters.
"""

from typing import Optional
from urllib.parse import quote, urlencode

from bs4 import Tag

from .base import SourceAdapter, format_param, slugify
from ..models import AlertCriteria, NormalizedListing, SourceName, TransactionType
from ..normalization import canonicalize_url, extract_int, extract_number


class ProperatiAdapter(SourceAdapter):
    """Adapter for properati.com.pe (card extraction)."""

    source = SourceName.PROPERATI
    base_url = "https://www.properati.com.pe"

    def build_search_url(self, criteria: AlertCriteria, page: int = 1) -> str:
        transaction = "alquiler" if criteria.transaction_type == TransactionType.RENT else "venta"
        path = ["s", slugify(criteria.city or "Lima"), "departamento", transaction]
        if page > 1:
            path.append(str(page))

        params = []
        if criteria.max_price:
            params.append(("price_to", format_param(criteria.max_price)))
        if criteria.min_square_meters:
            params.append(("surface_from", format_param(criteria.min_square_meters)))
        if criteria.max_square_meters:
            params.append(("surface_to", format_param(criteria.max_square_meters)))
        if criteria.min_bedrooms:
            params.append(("bedrooms", format_param(criteria.min_bedrooms)))
        if criteria.neighborhood:
            params.append(("l2", criteria.neighborhood))

        url = f"{self.base_url}/{'/'.join(path)}"
        if params:
            url += f"?{urlencode(params, quote_via=quote)}"
        return url

    def has_next_page(self, html: str) -> bool:
        next_button = self._soup(html).select_one(self.selectors["searchResults"]["nextPage"])
        if next_button is None:
            return False
        return next_button.get("data-islast") != "true"

    def extract_from_search_page(self, html: str, criteria: AlertCriteria) -> list[NormalizedListing]:
        return self._extract_cards(html, criteria)

    def _parse_card(self, card: Tag, criteria: AlertCriteria) -> Optional[NormalizedListing]:
        sel = self.selectors["card"]

        url = card.get(self.selectors["searchResults"]["urlAttribute"])
        if not url:
            return None
        canonical_url = canonicalize_url(url, self.base_url)

        parking_text = self._text(card, sel["parking"])
        if "cochera" in parking_text.lower() and extract_int(parking_text) is None:
            parking = 1
        else:
            parking = extract_int(parking_text)

        # "Santiago de Surco, Lima Centro, Lima, Lima"
        location = [p.strip() for p in self._text(card, sel["location"]).split(",")]
        neighborhood = location[0] or None
        city = location[2] if len(location) >= 3 and location[2] else criteria.city or "Lima"

        return self._make_listing(
            canonical_url=canonical_url,
            title=self._text(card, sel["title"]),
            price_text=self._text(card, sel["price"]),
            transaction_type=self._transaction_type_for(canonical_url, criteria),
            city=city,
            neighborhood=neighborhood,
            square_meters=extract_number(self._text(card, sel["area"])),
            bedrooms=extract_int(self._text(card, sel["bedrooms"])),
            bathrooms=extract_int(self._text(card, sel["bathrooms"])),
            parking=parking,
            image_url=self._attr(card, sel["image"], "src"),
        )
