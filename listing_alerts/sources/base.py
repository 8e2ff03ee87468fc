"""
Base adapter class for listing portals.

All adapters inherit from SourceAdapter and implement:
- build_search_url(): Encode alert criteria in the portal's routing
- extract_from_search_page(): Turn a results page into listings or detail URLs

Detail-page parsing, pagination and politeness delays are shared here.
Markup paths come from per-source JSON files in `selectors/` so layout
drift can be fixed without touching adapter code.
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Union

from bs4 import BeautifulSoup, Tag

from ..config import ScraperConfig, get_scraper_config
from ..exceptions import ExtractionError, NetworkError
from ..fetch import FetchClient, TransportPreference, random_delay
from ..fingerprint import fingerprint
from ..models import (
    SUPPORTED_CITIES,
    AlertCriteria,
    NormalizedListing,
    SourceName,
    TransactionType,
)
from ..normalization import (
    absolute_url,
    canonicalize_url,
    clean_text,
    extract_int,
    extract_number,
    normalize_address,
    parse_price,
    strip_diacritics,
)

logger = logging.getLogger(__name__)

SELECTORS_DIR = Path(__file__).parent / "selectors"

SearchPageResult = Union[list[NormalizedListing], list[str]]


def load_selectors(source: SourceName, override_dir: Optional[str] = None) -> dict:
    """
    Load the selector configuration for a source.

    Args:
        source: The portal
        override_dir: Directory checked first for `<source>.json`

    Returns:
        Parsed selector dict
    """
    filename = f"{source.value.lower()}.json"
    if override_dir:
        candidate = Path(override_dir) / filename
        if candidate.exists():
            logger.info(f"[{source.value}] Using selector override: {candidate}")
            with open(candidate, encoding="utf-8") as f:
                return json.load(f)
    with open(SELECTORS_DIR / filename, encoding="utf-8") as f:
        return json.load(f)


def slugify(text: str) -> str:
    """"San Isidro" -> "san-isidro"."""
    text = strip_diacritics(text.strip().lower())
    return re.sub(r"\s+", "-", text)


def format_param(value: Union[int, float]) -> str:
    """60.0 -> "60", 62.5 -> "62.5"."""
    return str(int(value)) if float(value).is_integer() else str(value)


class SourceAdapter(ABC):
    """
    Abstract base class for portal adapters.

    Subclasses set `source` and `base_url` and implement
    build_search_url() and extract_from_search_page(). Adapters that
    cannot read full data from result cards set `uses_detail_pages` and
    return detail URLs from extract_from_search_page().
    """

    source: SourceName
    base_url: str
    uses_detail_pages: bool = False

    def __init__(
        self,
        config: Optional[ScraperConfig] = None,
        selectors: Optional[dict] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or get_scraper_config()
        self.selectors = selectors or load_selectors(self.source, self.config.selectors_dir)
        self._sleep = sleep

    # =========================================================================
    # PORTAL-SPECIFIC
    # =========================================================================

    @abstractmethod
    def build_search_url(self, criteria: AlertCriteria, page: int = 1) -> str:
        """Deterministic search URL for the criteria and 1-based page."""
        pass

    @abstractmethod
    def extract_from_search_page(self, html: str, criteria: AlertCriteria) -> SearchPageResult:
        """
        Parse a search results page.

        Returns:
            Complete listings (card adapters) or detail-page URLs
        """
        pass

    def _parse_card(self, card: Tag, criteria: AlertCriteria) -> Optional[NormalizedListing]:
        """Build a listing from one result card (card-mode adapters only)."""
        raise NotImplementedError(f"{type(self).__name__} does not parse result cards")

    def _extract_cards(self, html: str, criteria: AlertCriteria) -> list[NormalizedListing]:
        """
        Run _parse_card() over every result card.

        A card missing title or price is dropped at debug level; markup
        that breaks the parser drops the card with a warning.
        """
        name = self.source.value
        listings = []

        for card in self._soup(html).select(self.selectors["searchResults"]["listingCard"]):
            try:
                listing = self._parse_card(card, criteria)
            except ExtractionError as e:
                logger.debug(f"[{name}] CARD_DROPPED: {e}")
                continue
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"[{name}] CARD_ERROR: {e}")
                continue
            if listing:
                listings.append(listing)

        return listings

    def has_next_page(self, html: str) -> bool:
        next_selector = self.selectors["searchResults"].get("nextPage")
        if not next_selector:
            return False
        return self._soup(html).select_one(next_selector) is not None

    # =========================================================================
    # DETAIL PAGES
    # =========================================================================

    def extract_from_detail_page(
        self,
        html: str,
        url: str,
        criteria: Optional[AlertCriteria] = None,
    ) -> Optional[NormalizedListing]:
        """
        Parse a single listing page using the `listingPage` selectors.

        Transaction type and city come from the criteria that produced the
        search, falling back to the URL when parsing a page on its own.

        Returns:
            NormalizedListing, or None when title or price is missing
        """
        soup = self._soup(html)
        page = self.selectors["listingPage"]

        try:
            title = self._text(soup, page.get("title"))
            price_text = self._price_text(soup, page)
            features = self._detail_features(soup, page)
            neighborhood = self._text(soup, page.get("neighborhood")) or None
            image_url = self._attr(soup, page.get("imageUrl"), "src")

            return self._make_listing(
                canonical_url=canonicalize_url(url, self.base_url),
                title=title,
                price_text=price_text,
                transaction_type=self._transaction_type_for(url, criteria),
                city=criteria.city if criteria and criteria.city else self._city_from_url(url),
                neighborhood=neighborhood,
                image_url=image_url,
                **features,
            )
        except ExtractionError as e:
            logger.info(f"[{self.source.value}] LISTING_PARSE_FAILED: {url} - {e}")
            return None

    def _price_text(self, soup: BeautifulSoup, page: dict) -> str:
        price_text = self._text(soup, page.get("price"))
        # Some portals render "S/ 4,509 · USD 1,350"; the first amount wins
        return price_text.split("·")[0].strip()

    def _detail_features(self, soup: BeautifulSoup, page: dict) -> dict:
        return {
            "square_meters": extract_number(self._text(soup, page.get("squareMeters"))),
            "bedrooms": extract_int(self._text(soup, page.get("bedrooms"))),
            "bathrooms": extract_int(self._text(soup, page.get("bathrooms"))),
            "parking": extract_int(self._text(soup, page.get("parking"))),
        }

    # =========================================================================
    # PAGINATION
    # =========================================================================

    def scrape(
        self,
        criteria: AlertCriteria,
        client: FetchClient,
        preference: Optional[TransportPreference] = None,
    ) -> list[NormalizedListing]:
        """
        Main entry point: paginate search results and return listings.

        Follows "next page" up to `max_pages`, stops early on an empty
        page, and caps the result at `max_listings_per_source`.

        Raises:
            NetworkError: If the first search page cannot be fetched
        """
        name = self.source.value
        cap = self.config.max_listings_per_source
        collected: list = []
        seen_urls: set[str] = set()

        for page in range(1, self.config.max_pages + 1):
            if len(collected) >= cap:
                break

            search_url = self.build_search_url(criteria, page)
            logger.info(f"[{name}] FETCHING_SEARCH: page {page} - {search_url}")

            html = client.fetch(search_url, preference=preference, source=self.source)
            if html is None:
                if page == 1:
                    raise NetworkError(f"Could not fetch search page {search_url}")
                logger.warning(f"[{name}] SEARCH_FAILED: Could not fetch page {page}")
                break

            candidates = self.extract_from_search_page(html, criteria)
            if not candidates:
                logger.info(f"[{name}] NO_MORE_RESULTS: page {page}")
                break

            for candidate in candidates:
                key = candidate if isinstance(candidate, str) else candidate.canonical_url
                if key in seen_urls:
                    continue
                seen_urls.add(key)
                collected.append(candidate)
            logger.info(f"[{name}] FOUND_LISTINGS: {len(candidates)} on page {page}")

            if not self.has_next_page(html):
                break

            self._pause()

        collected = collected[:cap]

        if self.uses_detail_pages:
            return self._fetch_details(collected, client, preference, criteria)
        return collected

    def _fetch_details(
        self,
        urls: list[str],
        client: FetchClient,
        preference: Optional[TransportPreference],
        criteria: Optional[AlertCriteria] = None,
    ) -> list[NormalizedListing]:
        name = self.source.value
        listings = []

        for index, url in enumerate(urls):
            logger.debug(f"[{name}] FETCHING_LISTING: {url}")
            html = client.fetch(url, preference=preference, source=self.source)
            if html is None:
                logger.info(f"[{name}] LISTING_FETCH_FAILED: {url}")
            else:
                listing = self.extract_from_detail_page(html, url, criteria)
                if listing:
                    listings.append(listing)

            if index < len(urls) - 1:
                self._pause()

        logger.info(f"[{name}] PARSED_DETAILS: {len(listings)}/{len(urls)}")
        return listings

    def _pause(self) -> None:
        random_delay(self.config.min_delay, self.config.max_delay, sleep=self._sleep)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _soup(html: str) -> BeautifulSoup:
        return BeautifulSoup(html, "html.parser")

    @staticmethod
    def _text(node: Union[BeautifulSoup, Tag], selector: Optional[str]) -> str:
        """Stripped text of the first match, or "" when absent."""
        if not selector:
            return ""
        found = node.select_one(selector)
        return clean_text(found.get_text(" ")) if found else ""

    @staticmethod
    def _attr(node: Union[BeautifulSoup, Tag], selector: Optional[str], attr: str) -> Optional[str]:
        if not selector:
            return None
        found = node.select_one(selector)
        if not found:
            return None
        value = found.get(attr)
        return value.strip() if isinstance(value, str) and value.strip() else None

    def _card_urls(self, html: str) -> list[str]:
        """Detail URLs from result cards, in page order, without repeats."""
        results = self.selectors["searchResults"]
        soup = self._soup(html)
        urls: list[str] = []

        for card in soup.select(results["listingCard"]):
            href = None
            if results.get("urlAttribute"):
                href = card.get(results["urlAttribute"])
            if not href and results.get("listingUrl"):
                link = card.select_one(results["listingUrl"])
                href = link.get("href") if link else None
            if not href:
                href = card.get("href")
            if not href:
                continue
            url = canonicalize_url(absolute_url(href, self.base_url))
            if url not in urls:
                urls.append(url)

        return urls

    def _transaction_type_from_url(self, url: str) -> TransactionType:
        return TransactionType.RENT if "alquiler" in url.lower() else TransactionType.BUY

    def _transaction_type_for(self, url: str, criteria: Optional[AlertCriteria]) -> TransactionType:
        if criteria is not None and isinstance(criteria.transaction_type, TransactionType):
            return criteria.transaction_type
        return self._transaction_type_from_url(url)

    def _city_from_url(self, url: str, default: str = "Lima") -> str:
        url_lower = url.lower()
        for city in SUPPORTED_CITIES:
            if re.search(rf"[/\-]{city.lower()}(?:[/\-?_]|$)", url_lower):
                return city
        return default

    def _make_listing(
        self,
        canonical_url: str,
        title: str,
        price_text: str,
        transaction_type: TransactionType,
        city: str,
        neighborhood: Optional[str] = None,
        square_meters: Optional[float] = None,
        bedrooms: Optional[int] = None,
        bathrooms: Optional[int] = None,
        parking: Optional[int] = None,
        image_url: Optional[str] = None,
    ) -> NormalizedListing:
        """
        Build a fingerprinted listing.

        Raises:
            ExtractionError: If title or price is missing
        """
        if not title:
            raise ExtractionError("missing title")
        price_data = parse_price(price_text)
        if price_data is None:
            raise ExtractionError(f"missing price ({price_text!r})")

        address = normalize_address(" ".join(p for p in (city, neighborhood, title) if p))

        return NormalizedListing(
            source=self.source,
            canonical_url=canonical_url,
            title=title,
            price=price_data.price,
            currency=price_data.currency,
            transaction_type=transaction_type,
            city=city,
            neighborhood=neighborhood,
            square_meters=square_meters,
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            parking=parking,
            image_url=absolute_url(image_url, self.base_url) if image_url else None,
            fingerprint_hash=fingerprint(
                self.source, address, price_data.price, square_meters, bedrooms
            ),
        )
