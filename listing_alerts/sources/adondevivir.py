"""
Adondevivir.com adapter.

Result cards only give a reliable link, so each listing is read from its
detail page. Routing mixes path segments (/alquiler/departamentos/lima/miraflores)
with dash-named query filters (precio-max, dormitorios-min, pagina).
"""

import logging
from urllib.parse import urlencode

from .base import SourceAdapter, format_param, slugify
from ..models import AlertCriteria, SourceName, TransactionType

logger = logging.getLogger(__name__)


class AdondevivirAdapter(SourceAdapter):
    """Adapter for adondevivir.com (detail-page extraction)."""

    source = SourceName.ADONDEVIVIR
    base_url = "https://www.adondevivir.com"
    uses_detail_pages = True

    def build_search_url(self, criteria: AlertCriteria, page: int = 1) -> str:
        path = [
            "alquiler" if criteria.transaction_type == TransactionType.RENT else "venta",
            "departamentos",
            slugify(criteria.city or "Lima"),
        ]
        if criteria.neighborhood:
            path.append(slugify(criteria.neighborhood))

        params = []
        if criteria.max_price:
            params.append(("precio-max", format_param(criteria.max_price)))
        if criteria.min_square_meters:
            params.append(("area-min", format_param(criteria.min_square_meters)))
        if criteria.max_square_meters:
            params.append(("area-max", format_param(criteria.max_square_meters)))
        if criteria.min_bedrooms:
            params.append(("dormitorios-min", format_param(criteria.min_bedrooms)))
        if page > 1:
            params.append(("pagina", page))

        url = f"{self.base_url}/{'/'.join(path)}"
        if params:
            url += f"?{urlencode(params)}"
        return url

    def extract_from_search_page(self, html: str, criteria: AlertCriteria) -> list[str]:
        urls = self._card_urls(html)
        logger.debug(f"[{self.source.value}] Found {len(urls)} detail URLs")
        return urls
