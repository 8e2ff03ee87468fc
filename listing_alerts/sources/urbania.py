"""
Urbania.pe adapter.

Urbania result cards carry everything we need (price, features,
location, image), so listings are built straight from the search page
and no detail request is made per listing.

Routing is path-based: /buscar/alquiler-de-departamentos-en-lima--miraflores.
Filter query parameters trigger redirects into Cloudflare challenges, so
only the page number goes in the query; price/area/bedroom filters are
applied after scraping.
"""

from typing import Optional

from bs4 import Tag

from .base import SourceAdapter, slugify
from ..models import AlertCriteria, NormalizedListing, SourceName, TransactionType
from ..normalization import canonicalize_url, extract_int, extract_number


class UrbaniaAdapter(SourceAdapter):
    """Adapter for urbania.pe (card extraction)."""

    source = SourceName.URBANIA
    base_url = "https://urbania.pe"

    def build_search_url(self, criteria: AlertCriteria, page: int = 1) -> str:
        transaction = "alquiler" if criteria.transaction_type == TransactionType.RENT else "venta"
        city = slugify(criteria.city or "Lima")

        slug = f"{transaction}-de-departamentos-en-{city}"
        if criteria.neighborhood:
            slug += f"--{slugify(criteria.neighborhood)}"

        url = f"{self.base_url}/buscar/{slug}"
        if page > 1:
            url += f"?pagina={page}"
        return url

    def extract_from_search_page(self, html: str, criteria: AlertCriteria) -> list[NormalizedListing]:
        return self._extract_cards(html, criteria)

    def _parse_card(self, card: Tag, criteria: AlertCriteria) -> Optional[NormalizedListing]:
        sel = self.selectors["card"]

        relative_url = card.get(self.selectors["searchResults"]["urlAttribute"])
        if not relative_url:
            return None
        canonical_url = canonicalize_url(relative_url, self.base_url)

        title = self._text(card, sel["title"])
        # "S/ 4,509 · USD 1,350": first segment is the listed currency
        price_text = self._text(card, sel["price"]).split("·")[0].strip()

        features = self._parse_features(card, sel["features"])

        # "Miraflores, Lima"
        location = [p.strip() for p in self._text(card, sel["location"]).split(",")]
        neighborhood = location[0] or None
        city = location[1] if len(location) > 1 and location[1] else criteria.city or "Lima"

        return self._make_listing(
            canonical_url=canonical_url,
            title=title,
            price_text=price_text,
            transaction_type=self._transaction_type_for(canonical_url, criteria),
            city=city,
            neighborhood=neighborhood,
            image_url=self._attr(card, sel["image"], "src"),
            **features,
        )

    @staticmethod
    def _parse_features(card: Tag, selector: str) -> dict:
        features = {"square_meters": None, "bedrooms": None, "bathrooms": None, "parking": None}
        for span in card.select(selector):
            text = span.get_text(" ", strip=True).lower()
            if "m²" in text or "m2" in text:
                features["square_meters"] = extract_number(text)
            elif "dorm" in text:
                features["bedrooms"] = extract_int(text)
            elif "baño" in text or "bano" in text:
                features["bathrooms"] = extract_int(text)
            elif "estac" in text or "cochera" in text:
                features["parking"] = extract_int(text)
        return features
