"""Tests for portal adapters: URL building, extraction and pagination."""

import json

import pytest

from listing_alerts.exceptions import NetworkError
from listing_alerts.fetch import FetchClient
from listing_alerts.models import AlertCriteria, Currency, SourceName, TransactionType
from listing_alerts.sources import (
    AdondevivirAdapter,
    MercadoLibreAdapter,
    ProperatiAdapter,
    UrbaniaAdapter,
    build_adapter_registry,
    load_selectors,
)

from conftest import FakeTransport, no_sleep


URBANIA_CARD = """
<div data-qa="posting PROPERTY" data-to-posting="/inmueble/clasificado/alclapin-depa-miraflores-145?utm_source=list">
  <div data-qa="POSTING_CARD_GALLERY"><img src="https://img.urbania.pe/145.jpg"></div>
  <div data-qa="POSTING_CARD_PRICE">S/ 2,800 · USD 750</div>
  <div data-qa="POSTING_CARD_LOCATION">Miraflores, Lima</div>
  <h3 data-qa="POSTING_CARD_FEATURES">
    <span>85 m² tot.</span><span>2 dorm.</span><span>2 baños</span><span>1 estac.</span>
  </h3>
  <h2 data-qa="POSTING_CARD_DESCRIPTION"><a href="/inmueble/145">Departamento con vista al parque</a></h2>
</div>
"""

URBANIA_CARD_NO_PRICE = """
<div data-qa="posting PROPERTY" data-to-posting="/inmueble/clasificado/alclapin-depa-barranco-146">
  <div data-qa="POSTING_CARD_PRICE">Consultar precio</div>
  <h2 data-qa="POSTING_CARD_DESCRIPTION"><a href="/inmueble/146">Depa en Barranco</a></h2>
</div>
"""

URBANIA_PAGE = f"""
<html><body>
  {URBANIA_CARD}
  {URBANIA_CARD_NO_PRICE}
  <a data-qa="PAGING_NEXT" href="?pagina=2">Siguiente</a>
</body></html>
"""

PROPERATI_PAGE = """
<html><body>
<article class="snippet" data-url="https://www.properati.com.pe/detalle/14032-32-abc?ref=list">
  <div class="snippet__image"><img src="https://img.properati.com/abc.jpg"></div>
  <a class="title" href="/detalle/14032-32-abc">Departamento en alquiler en Surco</a>
  <div data-test="snippet__price">USD 1,100</div>
  <div data-test="snippet__location">Santiago de Surco, Lima Centro, Lima, Lima</div>
  <span data-test="bedrooms-value">3 dormitorios</span>
  <span data-test="full-bathrooms-value">2 baños</span>
  <span data-test="area-value">120 m²</span>
  <span data-test="principal-amenity-value">Cochera</span>
</article>
<a id="pagination-next" data-islast="true" href="/s/lima/departamento/alquiler/2">Siguiente</a>
</body></html>
"""

ADONDEVIVIR_SEARCH = """
<html><body>
  <div data-qa="posting PROPERTY" data-to-posting="/propiedades/depa-miraflores-1.html?x=1"></div>
  <div data-qa="posting PROPERTY" data-to-posting="/propiedades/depa-miraflores-2.html"></div>
  <div data-qa="posting PROPERTY" data-to-posting="/propiedades/depa-miraflores-1.html"></div>
</body></html>
"""

ADONDEVIVIR_DETAIL = """
<html><body>
  <h1 class="title-property">Lindo departamento en Miraflores</h1>
  <div class="price-value">S/ 2,400</div>
  <ul>
    <li><i class="icon-stotal"></i> 90 m² totales</li>
    <li><i class="icon-dormitorio"></i> 3 dormitorios</li>
    <li><i class="icon-bano"></i> 2 baños</li>
    <li><i class="icon-cochera"></i> 1 estacionamiento</li>
  </ul>
  <h2 class="title-location">Miraflores</h2>
  <div id="preview-gallery"><img src="/img/1.jpg"></div>
</body></html>
"""

ADONDEVIVIR_DETAIL_NO_PRICE = """
<html><body><h1 class="title-property">Departamento sin precio</h1></body></html>
"""

MERCADOLIBRE_SEARCH = """
<html><body><ol>
  <li class="ui-search-layout__item">
    <a class="poly-component__title" href="https://departamento.mercadolibre.com.pe/MPE-123456-depa-miraflores-_JM#position=1">Depa</a>
  </li>
</ol>
<ul><li class="andes-pagination__button andes-pagination__button--next"><a href="_Desde_49">Siguiente</a></li></ul>
</body></html>
"""

MERCADOLIBRE_DETAIL = """
<html><body>
  <h1 class="ui-pdp-title">Alquiler Departamento 2 Dormitorios Miraflores</h1>
  <div class="ui-pdp-price__second-line">
    <span class="andes-money-amount__currency-symbol">US$</span>
    <span class="andes-money-amount__fraction">1.200</span>
  </div>
  <div class="ui-vip-location__subtitle"><p>Miraflores</p></div>
  <figure class="ui-pdp-gallery__figure"><img src="https://http2.mlstatic.com/a.jpg"></figure>
  <table>
    <tr><th>Superficie total</th><td>75 m²</td></tr>
    <tr><th>Dormitorios</th><td>2</td></tr>
    <tr><th>Baños</th><td>1</td></tr>
    <tr><th>Estacionamientos</th><td>1</td></tr>
  </table>
</body></html>
"""


@pytest.fixture
def criteria():
    return AlertCriteria(transaction_type=TransactionType.RENT, city="Lima")


def client_for(config, pages: dict) -> FetchClient:
    return FetchClient(config, transports=[FakeTransport(pages=pages)], sleep=no_sleep)


class TestSelectors:
    """Tests for selector configuration loading."""

    def test_packaged_selectors_exist(self):
        """Test that every source ships a selector file."""
        for source in SourceName:
            selectors = load_selectors(source)
            assert "listingCard" in selectors["searchResults"]

    def test_override_directory(self, tmp_path):
        """Test that an override file replaces the packaged one."""
        override = {"searchResults": {"listingCard": "div.custom"}, "card": {}, "listingPage": {}}
        (tmp_path / "urbania.json").write_text(json.dumps(override), encoding="utf-8")

        assert load_selectors(SourceName.URBANIA, str(tmp_path)) == override
        assert load_selectors(SourceName.PROPERATI, str(tmp_path))["searchResults"]["listingCard"] == "article.snippet"

    def test_registry_has_every_source(self, fast_config):
        """Test that the registry maps each source to its adapter."""
        registry = build_adapter_registry(fast_config, sleep=no_sleep)
        assert set(registry) == set(SourceName)
        assert isinstance(registry[SourceName.MERCADOLIBRE], MercadoLibreAdapter)


class TestUrbania:
    """Tests for the Urbania adapter."""

    def test_search_url(self, fast_config):
        """Test path-based routing with the neighborhood slug."""
        adapter = UrbaniaAdapter(fast_config, sleep=no_sleep)
        criteria = AlertCriteria(
            transaction_type=TransactionType.RENT, city="Lima", neighborhood="San Isidro", max_price=3000
        )

        assert adapter.build_search_url(criteria) == (
            "https://urbania.pe/buscar/alquiler-de-departamentos-en-lima--san-isidro"
        )
        assert adapter.build_search_url(criteria, page=2).endswith("?pagina=2")

    def test_search_url_buy(self, fast_config):
        """Test the sale route."""
        adapter = UrbaniaAdapter(fast_config, sleep=no_sleep)
        criteria = AlertCriteria(transaction_type=TransactionType.BUY, city="Arequipa")
        assert adapter.build_search_url(criteria) == "https://urbania.pe/buscar/venta-de-departamentos-en-arequipa"

    def test_search_url_ignores_property_types(self, fast_config):
        """Test that property types on the alert leave the apartment route unchanged."""
        adapter = UrbaniaAdapter(fast_config, sleep=no_sleep)
        criteria = AlertCriteria(transaction_type=TransactionType.RENT, city="Lima", property_types=("casa",))
        assert adapter.build_search_url(criteria) == "https://urbania.pe/buscar/alquiler-de-departamentos-en-lima"

    def test_extract_cards(self, fast_config, criteria):
        """Test card extraction and that a card without price is dropped."""
        adapter = UrbaniaAdapter(fast_config, sleep=no_sleep)
        listings = adapter.extract_from_search_page(URBANIA_PAGE, criteria)

        assert len(listings) == 1
        listing = listings[0]
        assert listing.canonical_url == "https://urbania.pe/inmueble/clasificado/alclapin-depa-miraflores-145"
        assert listing.title == "Departamento con vista al parque"
        assert listing.price == 2800
        assert listing.currency == Currency.PEN
        assert listing.square_meters == 85.0
        assert listing.bedrooms == 2
        assert listing.bathrooms == 2
        assert listing.parking == 1
        assert listing.neighborhood == "Miraflores"
        assert listing.city == "Lima"
        assert listing.transaction_type == TransactionType.RENT
        assert listing.image_url == "https://img.urbania.pe/145.jpg"
        assert len(listing.fingerprint_hash) == 32

    def test_has_next_page(self, fast_config):
        """Test the next-page marker."""
        adapter = UrbaniaAdapter(fast_config, sleep=no_sleep)
        assert adapter.has_next_page(URBANIA_PAGE)
        assert not adapter.has_next_page("<html></html>")

    def test_scrape_paginates_until_empty_page(self, fast_config, criteria):
        """Test that an empty page ends pagination without error."""
        adapter = UrbaniaAdapter(fast_config, sleep=no_sleep)
        base = "https://urbania.pe/buscar/alquiler-de-departamentos-en-lima"
        transport = FakeTransport(pages={base: URBANIA_PAGE, f"{base}?pagina=2": "<html><body></body></html>"})
        client = FetchClient(fast_config, transports=[transport], sleep=no_sleep)

        listings = adapter.scrape(criteria, client)

        assert len(listings) == 1
        assert transport.calls == [base, f"{base}?pagina=2"]

    def test_scrape_respects_max_pages(self, fast_config, criteria):
        """Test the page cap when every page has a next link."""
        fast_config.max_pages = 2
        adapter = UrbaniaAdapter(fast_config, sleep=no_sleep)
        base = "https://urbania.pe/buscar/alquiler-de-departamentos-en-lima"
        transport = FakeTransport(pages={base: URBANIA_PAGE, f"{base}?pagina=2": URBANIA_PAGE})
        client = FetchClient(fast_config, transports=[transport], sleep=no_sleep)

        listings = adapter.scrape(criteria, client)

        assert len(transport.calls) == 2
        # Same card on both pages is kept once
        assert len(listings) == 1

    def test_first_page_failure_raises(self, fast_config, criteria, offline_client):
        """Test that an unreachable first page fails the source."""
        adapter = UrbaniaAdapter(fast_config, sleep=no_sleep)
        with pytest.raises(NetworkError):
            adapter.scrape(criteria, offline_client)

    def test_later_page_failure_keeps_results(self, fast_config, criteria):
        """Test that a failing page 2 keeps the page 1 listings."""
        adapter = UrbaniaAdapter(fast_config, sleep=no_sleep)
        client = client_for(fast_config, {"https://urbania.pe/buscar/alquiler-de-departamentos-en-lima": URBANIA_PAGE})

        assert len(adapter.scrape(criteria, client)) == 1


class TestCardExtraction:
    """Tests for the result-card loop shared by card adapters."""

    def test_broken_card_does_not_drop_page(self, fast_config, criteria):
        """Test that a card whose markup breaks the parser is skipped, keeping the rest."""
        class FlakyUrbania(UrbaniaAdapter):
            def _parse_card(self, card, criteria):
                if "145" in str(card):
                    raise AttributeError("'NoneType' object has no attribute 'get'")
                return super()._parse_card(card, criteria)

        page = f"<html><body>{URBANIA_CARD}{URBANIA_CARD.replace('145', '147')}</body></html>"
        listings = FlakyUrbania(fast_config, sleep=no_sleep).extract_from_search_page(page, criteria)

        assert [listing.canonical_url for listing in listings] == [
            "https://urbania.pe/inmueble/clasificado/alclapin-depa-miraflores-147"
        ]

    def test_properati_uses_shared_loop(self, fast_config, criteria):
        """Test that a Properati card without a price is dropped while the others parse."""
        page = PROPERATI_PAGE + (
            '<article class="snippet" data-url="/detalle/99-sin-precio">'
            '<a class="title">Depa sin precio</a>'
            '<div data-test="snippet__price">A consultar</div></article>'
        )
        listings = ProperatiAdapter(fast_config, sleep=no_sleep).extract_from_search_page(page, criteria)

        assert [listing.price for listing in listings] == [1100]

    def test_detail_adapter_has_no_card_parser(self, fast_config, criteria):
        """Test that running the card loop on a detail-page adapter is an error."""
        adapter = AdondevivirAdapter(fast_config, sleep=no_sleep)

        with pytest.raises(NotImplementedError):
            adapter._extract_cards(ADONDEVIVIR_SEARCH, criteria)


class TestProperati:
    """Tests for the Properati adapter."""

    def test_search_url(self, fast_config):
        """Test path pagination and query filters."""
        adapter = ProperatiAdapter(fast_config, sleep=no_sleep)
        criteria = AlertCriteria(
            transaction_type=TransactionType.RENT,
            city="Lima",
            neighborhood="San Isidro",
            max_price=3000,
            min_square_meters=60.0,
        )

        assert adapter.build_search_url(criteria, page=2) == (
            "https://www.properati.com.pe/s/lima/departamento/alquiler/2"
            "?price_to=3000&surface_from=60&l2=San%20Isidro"
        )

    def test_extract_cards(self, fast_config, criteria):
        """Test card extraction from data-test attributes."""
        adapter = ProperatiAdapter(fast_config, sleep=no_sleep)
        listings = adapter.extract_from_search_page(PROPERATI_PAGE, criteria)

        assert len(listings) == 1
        listing = listings[0]
        assert listing.canonical_url == "https://www.properati.com.pe/detalle/14032-32-abc"
        assert listing.price == 1100
        assert listing.currency == Currency.USD
        assert listing.bedrooms == 3
        assert listing.bathrooms == 2
        assert listing.square_meters == 120.0
        assert listing.parking == 1
        assert listing.neighborhood == "Santiago de Surco"
        assert listing.city == "Lima"

    def test_last_page_flag(self, fast_config):
        """Test that data-islast stops pagination."""
        adapter = ProperatiAdapter(fast_config, sleep=no_sleep)
        assert not adapter.has_next_page(PROPERATI_PAGE)
        assert adapter.has_next_page('<a id="pagination-next" data-islast="false"></a>')


class TestAdondevivir:
    """Tests for the Adondevivir adapter."""

    def test_search_url(self, fast_config):
        """Test path segments plus dash-named query filters."""
        adapter = AdondevivirAdapter(fast_config, sleep=no_sleep)
        criteria = AlertCriteria(
            transaction_type=TransactionType.RENT,
            city="Lima",
            neighborhood="Miraflores",
            max_price=2500,
            min_bedrooms=2,
        )

        assert adapter.build_search_url(criteria, page=3) == (
            "https://www.adondevivir.com/alquiler/departamentos/lima/miraflores"
            "?precio-max=2500&dormitorios-min=2&pagina=3"
        )

    def test_search_page_yields_unique_detail_urls(self, fast_config, criteria):
        """Test that detail URLs are canonical and unique."""
        adapter = AdondevivirAdapter(fast_config, sleep=no_sleep)
        urls = adapter.extract_from_search_page(ADONDEVIVIR_SEARCH, criteria)

        assert urls == [
            "https://www.adondevivir.com/propiedades/depa-miraflores-1.html",
            "https://www.adondevivir.com/propiedades/depa-miraflores-2.html",
        ]

    def test_detail_page(self, fast_config, criteria):
        """Test detail page extraction."""
        adapter = AdondevivirAdapter(fast_config, sleep=no_sleep)
        listing = adapter.extract_from_detail_page(
            ADONDEVIVIR_DETAIL, "https://www.adondevivir.com/propiedades/depa-miraflores-1.html", criteria
        )

        assert listing.title == "Lindo departamento en Miraflores"
        assert listing.price == 2400
        assert listing.square_meters == 90.0
        assert listing.bedrooms == 3
        assert listing.bathrooms == 2
        assert listing.parking == 1
        assert listing.neighborhood == "Miraflores"
        assert listing.transaction_type == TransactionType.RENT
        assert listing.image_url == "https://www.adondevivir.com/img/1.jpg"

    def test_detail_without_price_is_dropped(self, fast_config, criteria):
        """Test that a detail page missing its price yields None."""
        adapter = AdondevivirAdapter(fast_config, sleep=no_sleep)
        assert adapter.extract_from_detail_page(
            ADONDEVIVIR_DETAIL_NO_PRICE, "https://www.adondevivir.com/propiedades/x.html", criteria
        ) is None

    def test_scrape_follows_detail_pages(self, fast_config, criteria):
        """Test that scrape fetches each detail page and drops broken ones."""
        adapter = AdondevivirAdapter(fast_config, sleep=no_sleep)
        client = client_for(fast_config, {
            "https://www.adondevivir.com/alquiler/departamentos/lima": ADONDEVIVIR_SEARCH,
            "https://www.adondevivir.com/propiedades/depa-miraflores-1.html": ADONDEVIVIR_DETAIL,
            "https://www.adondevivir.com/propiedades/depa-miraflores-2.html": ADONDEVIVIR_DETAIL_NO_PRICE,
        })

        listings = adapter.scrape(criteria, client)

        assert [l.canonical_url for l in listings] == [
            "https://www.adondevivir.com/propiedades/depa-miraflores-1.html"
        ]

    def test_listing_cap(self, fast_config, criteria):
        """Test that the per-source cap limits detail fetches."""
        fast_config.max_listings_per_source = 1
        adapter = AdondevivirAdapter(fast_config, sleep=no_sleep)
        transport = FakeTransport(pages={
            "https://www.adondevivir.com/alquiler/departamentos/lima": ADONDEVIVIR_SEARCH,
            "https://www.adondevivir.com/propiedades/depa-miraflores-1.html": ADONDEVIVIR_DETAIL,
        })
        client = FetchClient(fast_config, transports=[transport], sleep=no_sleep)

        listings = adapter.scrape(criteria, client)

        assert len(listings) == 1
        assert len(transport.calls) == 2


class TestMercadoLibre:
    """Tests for the MercadoLibre adapter."""

    def test_search_url(self, fast_config):
        """Test path filters, offset pagination and query parameters."""
        adapter = MercadoLibreAdapter(fast_config, sleep=no_sleep)
        criteria = AlertCriteria(
            transaction_type=TransactionType.RENT,
            city="Lima",
            neighborhood="San Isidro",
            max_price=3000,
            min_square_meters=60.0,
            max_square_meters=90.0,
            min_bedrooms=2,
        )

        assert adapter.build_search_url(criteria, page=2) == (
            "https://inmuebles.mercadolibre.com.pe/departamentos/alquiler/lima/"
            "2-dormitorios_desde-60-m2_hasta-90-m2_Desde_49"
            "?precio-hasta=3000&barrio=San%20Isidro"
        )

    def test_search_url_plain(self, fast_config, criteria):
        """Test the URL without filters."""
        adapter = MercadoLibreAdapter(fast_config, sleep=no_sleep)
        assert adapter.build_search_url(criteria) == (
            "https://inmuebles.mercadolibre.com.pe/departamentos/alquiler/lima"
        )

    def test_search_page(self, fast_config, criteria):
        """Test detail URL extraction and next-page detection."""
        adapter = MercadoLibreAdapter(fast_config, sleep=no_sleep)

        assert adapter.extract_from_search_page(MERCADOLIBRE_SEARCH, criteria) == [
            "https://departamento.mercadolibre.com.pe/MPE-123456-depa-miraflores-_JM"
        ]
        assert adapter.has_next_page(MERCADOLIBRE_SEARCH)

    def test_detail_page(self, fast_config, criteria):
        """Test currency prefixing and attribute table features."""
        adapter = MercadoLibreAdapter(fast_config, sleep=no_sleep)
        listing = adapter.extract_from_detail_page(
            MERCADOLIBRE_DETAIL,
            "https://departamento.mercadolibre.com.pe/MPE-123456-depa-miraflores-_JM",
            criteria,
        )

        assert listing.price == 1200
        assert listing.currency == Currency.USD
        assert listing.square_meters == 75.0
        assert listing.bedrooms == 2
        assert listing.bathrooms == 1
        assert listing.parking == 1
        assert listing.neighborhood == "Miraflores"
        assert listing.image_url == "https://http2.mlstatic.com/a.jpg"
