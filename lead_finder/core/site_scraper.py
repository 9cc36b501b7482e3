"""Best-effort homepage scraping for one contact email and one Instagram link."""

from __future__ import annotations

import logging
import re
import threading
from typing import Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from lead_finder.core.errors import ScrapeFailure
from lead_finder.core.links import first_profile_link
from lead_finder.models import ScrapeResult

logger = logging.getLogger(__name__)

USER_AGENT = "PlacesLeadFinderBot/1.0 (+https://github.com/places-lead-finder; contact lookup)"
SCRAPE_TIMEOUT = 5
DEFAULT_SCRAPE_CAP = 12

EMAIL_REGEX = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_INVISIBLE_TAGS = ("script", "style", "noscript", "template")


class ScrapeBudget:
    """Per-run cap on homepage fetches. Safe to share between worker threads of one run."""

    def __init__(self, cap: int = DEFAULT_SCRAPE_CAP) -> None:
        self.cap = cap
        self.used = 0
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        with self._lock:
            if self.used >= self.cap:
                return False
            self.used += 1
            return True


def extract_email(soup: BeautifulSoup) -> Optional[str]:
    """First address in the visible text, else the first ``mailto:`` link."""

    for tag in soup(_INVISIBLE_TAGS):
        tag.decompose()
    match = EMAIL_REGEX.search(soup.get_text(" ", strip=True))
    if match:
        return match.group(0)

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.lower().startswith("mailto:"):
            email = href.split(":", 1)[1].split("?")[0].strip()
            if EMAIL_REGEX.fullmatch(email):
                return email
    return None


def extract_profile_link(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    hrefs = (anchor["href"].strip() for anchor in soup.find_all("a", href=True))
    return first_profile_link(urljoin(base_url, href) for href in hrefs if href)


class WebsiteScraper:
    """Single-page fetch of a homepage. ``scrape`` never raises."""

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        timeout: int = SCRAPE_TIMEOUT,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.session.headers.setdefault("Accept", "text/html,application/xhtml+xml")
        self.session.headers.setdefault("Accept-Language", "ja,en-US;q=0.9,en;q=0.8")

    def fetch(self, url: str) -> tuple:
        """Return ``(final_url, soup)`` or raise ScrapeFailure."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ScrapeFailure(f"run cancelled before fetching {url}")
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as exc:
            raise ScrapeFailure(f"failed to fetch {url}: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise ScrapeFailure(f"{url} answered HTTP {response.status_code}")
        content_type = response.headers.get("Content-Type", "").lower()
        if content_type and "html" not in content_type:
            raise ScrapeFailure(f"{url} is not HTML (content-type={content_type})")
        # Without a header charset requests assumes ISO-8859-1; raw bytes let bs4 honour <meta charset>.
        markup = response.text if "charset=" in content_type else response.content
        return response.url or url, BeautifulSoup(markup, "html.parser")

    def scrape(self, url: str) -> ScrapeResult:
        try:
            final_url, soup = self.fetch(url)
            social = extract_profile_link(soup, final_url)
            email = extract_email(soup)
        except ScrapeFailure as exc:
            logger.info("Scrape skipped: %s", exc)
            return ScrapeResult()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Unexpected scrape failure for %s: %s", url, exc)
            return ScrapeResult()
        return ScrapeResult(email=email, social=social)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "WebsiteScraper":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
