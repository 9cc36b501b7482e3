"""Client utilities for the Google Places API."""

import logging
import time
from typing import Any, Dict, Iterator, Optional

import requests

from lead_finder.core.errors import UpstreamDetailError, UpstreamSearchError
from lead_finder.models import PlaceDetail, PlaceSummary

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/place"
_OK_STATUSES = {"OK", "ZERO_RESULTS"}
DETAIL_FIELDS = (
    "place_id,name,formatted_address,formatted_phone_number,international_phone_number,website,rating"
)


def classify_api_status(status: Optional[str], message: Optional[str]) -> str:
    """Map a Places ``status`` plus ``error_message`` to a cause shown to the caller."""

    lowered = (message or "").lower()
    if status == "OVER_QUERY_LIMIT":
        return "rate_limited" if "rate" in lowered else "quota"
    if status == "REQUEST_DENIED":
        if "invalid" in lowered or "expired" in lowered:
            return "auth"
        return "permission"
    if status == "INVALID_REQUEST":
        return "malformed_request"
    return "unknown"


def classify_http_status(status_code: int) -> str:
    if status_code == 429:
        return "rate_limited"
    if status_code == 401:
        return "auth"
    if status_code == 403:
        return "permission"
    if status_code == 400:
        return "malformed_request"
    if status_code >= 500:
        return "unavailable"
    return "unknown"


def _safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _strip_or_none(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _get_json(
    endpoint: str,
    params: Dict[str, Any],
    *,
    timeout: int,
    error_cls,
) -> Dict[str, Any]:
    try:
        response = _SESSION.get(f"{_BASE_URL}/{endpoint}", params=params, timeout=timeout)
    except requests.Timeout:
        raise error_cls(f"{endpoint} timed out", cause="timeout") from None
    except requests.RequestException as exc:
        # Transport errors quote the request URL, API key included.
        raise error_cls(f"{endpoint} request failed ({type(exc).__name__})", cause="unavailable") from None

    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    status = payload.get("status")
    message = payload.get("error_message")
    if response.status_code >= 400:
        cause = classify_api_status(status, message)
        if cause == "unknown":
            cause = classify_http_status(response.status_code)
        logger.error("%s failed: http=%s status=%s error_message=%s", endpoint, response.status_code, status, message)
        raise error_cls(message or f"HTTP {response.status_code}", cause=cause, upstream_status=status)

    if status not in _OK_STATUSES:
        logger.error("%s failed: status=%s, error_message=%s", endpoint, status, message)
        raise error_cls(message or str(status), cause=classify_api_status(status, message), upstream_status=status)
    return payload


def text_search(
    query: str,
    api_key: str,
    pagetoken: Optional[str] = None,
    *,
    language: Optional[str] = None,
    timeout: int = 10,
) -> Dict[str, Any]:
    params = {"query": query, "key": api_key}
    if language:
        params["language"] = language
    if pagetoken:
        params["pagetoken"] = pagetoken
    return _get_json("textsearch/json", params, timeout=timeout, error_cls=UpstreamSearchError)


def place_details(
    place_id: str,
    api_key: str,
    *,
    language: Optional[str] = None,
    timeout: int = 10,
) -> Dict[str, Any]:
    params = {"place_id": place_id, "key": api_key, "fields": DETAIL_FIELDS}
    if language:
        params["language"] = language
    payload = _get_json("details/json", params, timeout=timeout, error_cls=UpstreamDetailError)
    result = payload.get("result")
    return result if isinstance(result, dict) else {}


def to_place_summary(raw: Dict[str, Any]) -> Optional[PlaceSummary]:
    place_id = _strip_or_none(raw.get("place_id"))
    if not place_id:
        return None
    return PlaceSummary(
        place_id=place_id,
        name=_strip_or_none(raw.get("name")),
        formatted_address=_strip_or_none(raw.get("formatted_address")),
        rating=_safe_float(raw.get("rating")),
    )


def to_place_detail(place_id: str, raw: Dict[str, Any]) -> PlaceDetail:
    return PlaceDetail(
        place_id=_strip_or_none(raw.get("place_id")) or place_id,
        name=_strip_or_none(raw.get("name")),
        formatted_address=_strip_or_none(raw.get("formatted_address")),
        phone=_strip_or_none(raw.get("formatted_phone_number"))
        or _strip_or_none(raw.get("international_phone_number")),
        website=_strip_or_none(raw.get("website")),
        rating=_safe_float(raw.get("rating")),
    )


class PlaceSearchClient:
    """Paginated text search yielding at most ``limit`` place summaries.

    Google needs a short warm-up before a ``next_page_token`` becomes valid;
    asking for the next page immediately answers ``INVALID_REQUEST``, hence
    the pause before every follow-up page. A failed follow-up page ends the
    search with the results already yielded; only a first-page failure raises.
    """

    def __init__(
        self,
        *,
        max_pages: int = 3,
        page_delay: float = 2.0,
        language: Optional[str] = "ja",
        timeout: int = 10,
    ) -> None:
        self.max_pages = max_pages
        self.page_delay = page_delay
        self.language = language
        self.timeout = timeout

    def search(self, query: str, api_key: str, limit: int) -> Iterator[PlaceSummary]:
        if limit <= 0:
            return
        yielded = 0
        page_token = None
        for page in range(1, self.max_pages + 1):
            if page_token:
                time.sleep(self.page_delay)
            try:
                payload = text_search(
                    query, api_key, pagetoken=page_token, language=self.language, timeout=self.timeout
                )
            except UpstreamSearchError as exc:
                if page == 1:
                    raise
                # Earlier pages were already yielded; end the search with them.
                logger.warning("Page %d failed (%s), keeping %d results: %s", page, exc.cause, yielded, exc)
                return
            results = payload.get("results") or []
            logger.info("Fetched %d results on page %d", len(results), page)

            for raw in results:
                if not isinstance(raw, dict):
                    continue
                summary = to_place_summary(raw)
                if summary is None:
                    logger.debug("Skipping result without place_id: %s", raw)
                    continue
                yield summary
                yielded += 1
                if yielded >= limit:
                    return

            page_token = payload.get("next_page_token")
            if not page_token:
                return


class PlaceDetailClient:
    def __init__(self, *, language: Optional[str] = "ja", timeout: int = 10) -> None:
        self.language = language
        self.timeout = timeout

    def fetch(self, place_id: str, api_key: str) -> PlaceDetail:
        raw = place_details(place_id, api_key, language=self.language, timeout=self.timeout)
        return to_place_detail(place_id, raw)

