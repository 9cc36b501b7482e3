"""Classification of discovered URLs into social profiles and candidate homepages."""

import logging
from typing import Iterable, List, Optional
from urllib.parse import urlparse, urlunparse

from lead_finder.models import LinkClassification

logger = logging.getLogger(__name__)

PROFILE_NETWORK_HOSTS = ("instagram.com", "instagr.am")
SOCIAL_HOSTS = PROFILE_NETWORK_HOSTS + (
    "facebook.com",
    "fb.com",
    "twitter.com",
    "x.com",
    "tiktok.com",
    "youtube.com",
    "youtu.be",
    "linkedin.com",
    "line.me",
    "lin.ee",
    "linktr.ee",
    "lit.link",
    "note.com",
    "ameblo.jp",
    "pinterest.com",
    "threads.net",
)


def _host_matches(host: str, allowed: Iterable[str]) -> bool:
    return any(host == candidate or host.endswith("." + candidate) for candidate in allowed)


def classify_link(url: Optional[str]) -> LinkClassification:
    """Classify ``url``. Unparseable input is reported as a non-social link kept verbatim."""

    raw = (url or "").strip()
    try:
        parsed = urlparse(raw)
        host = (parsed.hostname or "").lower()
    except ValueError:
        logger.debug("Unparseable link %r", raw)
        return LinkClassification(is_social=False, is_profile_network=False, canonical_url=raw)

    if not host:
        return LinkClassification(is_social=False, is_profile_network=False, canonical_url=raw)

    canonical = urlunparse(
        (parsed.scheme.lower() or "https", parsed.netloc.lower(), parsed.path, parsed.params, parsed.query, "")
    )
    is_profile = _host_matches(host, PROFILE_NETWORK_HOSTS)
    return LinkClassification(
        is_social=is_profile or _host_matches(host, SOCIAL_HOSTS),
        is_profile_network=is_profile,
        canonical_url=canonical,
    )


def dedupe_links(urls: Iterable[Optional[str]]) -> List[str]:
    """Keep the first occurrence of each link, comparing canonical forms."""

    seen = set()
    unique: List[str] = []
    for url in urls:
        if not url:
            continue
        canonical = classify_link(url).canonical_url.rstrip("/")
        if canonical in seen:
            continue
        seen.add(canonical)
        unique.append(url)
    return unique


def first_profile_link(urls: Iterable[Optional[str]]) -> Optional[str]:
    for url in dedupe_links(urls):
        if classify_link(url).is_profile_network:
            return url
    return None
