"""Utilities for turning Places details and scrape results into result rows."""

import logging
import re
from typing import Iterable, List, Optional, Sequence

import phonenumbers

from lead_finder.core.links import classify_link
from lead_finder.models import PlaceDetail, PlaceSummary, ResultRow, ScrapeResult

logger = logging.getLogger(__name__)

NO_PHONE = "no phone"
UNKNOWN_NAME = "unknown"
UNKNOWN_ADDRESS = "unknown"

# 日本 only as a whole token, so 日本橋 or 西日本 survive.
_COUNTRY_TOKENS = re.compile(r"(?:^|(?<=[、,，\s]))日本(?=[、,，\s〒]|$)|\bJapan\b", re.IGNORECASE)
_POSTAL_CODE = re.compile(r"〒\s*[0-9０-９]{3}(?:[-‐-–—ー－ｰ]?[0-9０-９]{4})?")
_LEADING_PUNCT = re.compile(r"^[、,，\s]+")
_TRAILING_PUNCT = re.compile(r"[、,，\s]+$")
_MULTI_SPACE = re.compile(r"\s{2,}")


def _sanitize_once(address: str) -> str:
    cleaned = _COUNTRY_TOKENS.sub("", address)
    cleaned = _POSTAL_CODE.sub("", cleaned)
    cleaned = _LEADING_PUNCT.sub("", cleaned)
    cleaned = _TRAILING_PUNCT.sub("", cleaned)
    return _MULTI_SPACE.sub(" ", cleaned).strip()


def sanitize_address(address: Optional[str]) -> str:
    """Drop country and postal-code tokens and tidy punctuation and spacing.

    Applied until nothing changes, so a sanitized address sanitizes to itself.
    """

    if not address:
        return ""
    current = str(address)
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def normalize_phone(raw: Optional[str], default_region: Optional[str] = "JP") -> str:
    """Domestic leading-zero form for numbers given with a ``+<country code>`` prefix."""

    if not raw or not raw.strip():
        return NO_PHONE
    stripped = raw.strip()
    if not stripped.startswith("+"):
        return stripped

    try:
        parsed = phonenumbers.parse(stripped, default_region)
    except phonenumbers.NumberParseException:
        logger.debug("Unable to parse phone number %s", stripped)
        return stripped
    if not phonenumbers.is_possible_number(parsed):
        return stripped
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.NATIONAL)


def build_row(
    summary: PlaceSummary,
    detail: PlaceDetail,
    scrape: Optional[ScrapeResult],
    *,
    keyword: str,
    location: str,
    default_phone_region: Optional[str] = "JP",
) -> ResultRow:
    """Assemble one row. Social websites never populate ``homepage``."""

    website = detail.website
    homepage = None
    social = None
    if website:
        classification = classify_link(website)
        if classification.is_social:
            social = website
        else:
            homepage = website

    scrape = scrape or ScrapeResult()
    if scrape.social and not (social and classify_link(social).is_profile_network):
        social = scrape.social

    address = detail.formatted_address or summary.formatted_address
    rating = detail.rating if detail.rating is not None else summary.rating
    return ResultRow(
        name=detail.name or summary.name or UNKNOWN_NAME,
        address=sanitize_address(address) or UNKNOWN_ADDRESS,
        phone=normalize_phone(detail.phone, default_phone_region),
        rating=rating,
        homepage=homepage,
        email=scrape.email,
        social=social,
        keyword=keyword,
        location=location,
    )


def order_rows(rows: Iterable[ResultRow]) -> List[ResultRow]:
    """Sort by rating descending with unrated rows last, then number them 1..N."""

    ordered = sorted(rows, key=lambda row: (row.rating is None, -(row.rating or 0.0)))
    for position, row in enumerate(ordered, start=1):
        row.index = position
    return ordered


def chunked(items: Sequence, size: int) -> List[Sequence]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [items[start:start + size] for start in range(0, len(items), size)]
