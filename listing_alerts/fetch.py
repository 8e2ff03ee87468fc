"""
Resilient HTTP retrieval for source adapters.

FetchClient walks an ordered list of transport strategies (a plain
`requests` session first, then a `cloudscraper` session presenting a
browser TLS fingerprint). The first strategy gets the configured retries
with exponential backoff; the others get a single attempt. A bot
challenge ends the current strategy immediately.

`fetch()` never raises: every failure resolves to None plus a log line.
"""

import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlsplit

import cloudscraper
import requests

from .config import ScraperConfig, get_scraper_config
from .exceptions import BotChallengeDetected, NetworkError
from .models import SourceName

logger = logging.getLogger(__name__)


# Realistic desktop user agents, rotated per request
USER_AGENTS: list[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/18.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:132.0) Gecko/20100101 Firefox/132.0",
    "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_1) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]

# Markers of Cloudflare / Akamai interstitials, checked in the body prefix
CHALLENGE_MARKERS = ("just a moment", "challenge-platform", "cf-chl-")
CHALLENGE_SNIPPET_LENGTH = 5000


def get_random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def is_bot_challenge(html: str, min_length: int = 0) -> bool:
    """
    Heuristic bot-challenge detection.

    Args:
        html: Response body
        min_length: Bodies shorter than this are not a real listing page

    Returns:
        True if the body looks like an interstitial instead of content
    """
    if len(html) < min_length:
        return True
    snippet = html[:CHALLENGE_SNIPPET_LENGTH].lower()
    if any(marker in snippet for marker in CHALLENGE_MARKERS):
        return True
    return "_bmstate" in snippet and len(html) < CHALLENGE_SNIPPET_LENGTH


def random_delay(
    min_seconds: float,
    max_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> float:
    """Sleep for a random duration in [min_seconds, max_seconds]."""
    wait = random.uniform(min_seconds, max_seconds)
    if wait > 0:
        sleep(wait)
    return wait


# =============================================================================
# TRANSPORTS
# =============================================================================

class Transport(ABC):
    """One way of issuing a GET. Raises NetworkError on any failure."""

    name: str = ""

    @abstractmethod
    def get(self, url: str, headers: dict, timeout: float) -> str:
        pass


class RequestsTransport(Transport):
    """Plain `requests` session."""

    name = "requests"

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def get(self, url: str, headers: dict, timeout: float) -> str:
        try:
            response = self.session.get(url, headers=headers, timeout=timeout, allow_redirects=True)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(str(e)) from e
        return response.text


class CloudscraperTransport(Transport):
    """
    Session with a browser-like TLS/HTTP fingerprint.

    Solves the passive Cloudflare checks that reject the plain session.
    """

    name = "cloudscraper"

    def __init__(self, browser: Optional[dict] = None):
        self.browser = browser or {"browser": "chrome", "platform": "windows", "mobile": False}
        self._scraper = None

    @property
    def scraper(self):
        if self._scraper is None:
            self._scraper = cloudscraper.create_scraper(browser=self.browser)
        return self._scraper

    def get(self, url: str, headers: dict, timeout: float) -> str:
        # cloudscraper sets its own User-Agent to match the fingerprint
        headers = {k: v for k, v in headers.items() if k.lower() != "user-agent"}
        try:
            response = self.scraper.get(url, headers=headers, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(str(e)) from e
        except Exception as e:
            # Challenge solver errors do not derive from RequestException
            raise NetworkError(f"{type(e).__name__}: {e}") from e
        return response.text


def default_transports() -> list[Transport]:
    return [RequestsTransport(), CloudscraperTransport()]


# =============================================================================
# TRANSPORT PREFERENCE (per-job state)
# =============================================================================

@dataclass
class TransportPreference:
    """Transport that last succeeded via fallback for one source."""
    transport: Optional[str] = None


class TransportPreferences:
    """
    Per-job map of source -> preferred transport.

    Created by each job invocation and passed into adapter calls, so
    concurrent or later jobs never inherit each other's fallbacks.
    """

    def __init__(self):
        self._by_source: dict[SourceName, TransportPreference] = {}

    def for_source(self, source: SourceName) -> TransportPreference:
        return self._by_source.setdefault(source, TransportPreference())

    def as_dict(self) -> dict[str, Optional[str]]:
        return {source.value: pref.transport for source, pref in self._by_source.items()}


# =============================================================================
# FETCH CLIENT
# =============================================================================

class FetchClient:
    """
    Retrieve HTML with retries, challenge detection and transport fallback.

    Usage:
        client = FetchClient()
        html = client.fetch(url, source=SourceName.URBANIA)
    """

    def __init__(
        self,
        config: Optional[ScraperConfig] = None,
        transports: Optional[list[Transport]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or get_scraper_config()
        self.transports = transports if transports is not None else default_transports()
        self._sleep = sleep

    def build_headers(self, url: str, extra: Optional[dict] = None) -> dict:
        """Browser-like header set with a rotated user agent."""
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc}"
        headers = {
            "User-Agent": get_random_user_agent(),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            "Accept-Language": "es-PE,es;q=0.9,en-US;q=0.8,en;q=0.7",
            "Accept-Encoding": "gzip, deflate",
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
            "Referer": f"{origin}/",
            "Cache-Control": "max-age=0",
        }
        if extra:
            headers.update(extra)
        return headers

    def fetch(
        self,
        url: str,
        headers: Optional[dict] = None,
        preference: Optional[TransportPreference] = None,
        source: Optional[SourceName] = None,
    ) -> Optional[str]:
        """
        Fetch a page.

        Args:
            url: URL to fetch
            headers: Extra headers merged over the default set
            preference: Per-job transport preference for the calling source;
                updated when a fallback transport succeeds
            source: Used only to prefix log lines

        Returns:
            The response body, or None if every strategy failed
        """
        label = source.value if source else "FETCH"

        for transport in self._ordered(preference):
            html = self._try_transport(transport, url, headers, label)
            if html is None:
                continue
            if preference is not None and self.transports and transport is not self.transports[0]:
                if preference.transport != transport.name:
                    logger.info(f"[{label}] TRANSPORT_PREFERRED: {transport.name}")
                preference.transport = transport.name
            return html

        logger.warning(f"[{label}] FETCH_FAILED: {url}")
        return None

    def _ordered(self, preference: Optional[TransportPreference]) -> list[Transport]:
        """Preferred transport first, then the configured order."""
        if preference is None or preference.transport is None:
            return list(self.transports)
        preferred = [t for t in self.transports if t.name == preference.transport]
        others = [t for t in self.transports if t.name != preference.transport]
        return preferred + others

    def _attempts_for(self, transport: Transport) -> int:
        if self.transports and transport is self.transports[0]:
            return 1 + max(self.config.max_retries, 0)
        return 1

    def _try_transport(
        self,
        transport: Transport,
        url: str,
        headers: Optional[dict],
        label: str,
    ) -> Optional[str]:
        attempts = self._attempts_for(transport)

        for attempt in range(attempts):
            try:
                html = transport.get(
                    url,
                    headers=self.build_headers(url, headers),
                    timeout=self.config.request_timeout,
                )
                if is_bot_challenge(html, self.config.min_page_length):
                    raise BotChallengeDetected(url)
                return html
            except BotChallengeDetected:
                logger.warning(f"[{label}] BOT_CHALLENGE_DETECTED ({transport.name}): {url}")
                return None
            except NetworkError as e:
                logger.warning(
                    f"[{label}] FETCH_ATTEMPT_{attempt + 1}_FAILED ({transport.name}): {url} - {e}"
                )
                if attempt < attempts - 1:
                    self._sleep(self.config.retry_backoff_base * (2 ** attempt))

        return None
