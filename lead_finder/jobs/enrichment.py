"""Credit-metered search and enrichment pipeline.

A run moves through ``IDLE -> RESERVING -> SEARCHING -> ENRICHING ->
FINALIZING -> COMPLETED``; validation, credit and search failures end it in
``FAILED`` before any row is produced. Enrichment works through the places in
fixed-size chunks, each chunk fanned out over a bounded thread pool, under one
deadline for the whole phase. Places that fail, or that are still in flight
when the deadline passes, are dropped; the run still completes with whatever
rows resolved.
"""

import enum
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from itertools import islice
from typing import Callable, List, Optional

from lead_finder.core.config import Settings, get_settings
from lead_finder.core.errors import (
    InsufficientCreditError,
    InvalidRequest,
    LeadFinderError,
    UpstreamDetailError,
    UpstreamSearchError,
)
from lead_finder.core.keys import hash_key, normalize_api_key
from lead_finder.core.ledger import CreditLedger
from lead_finder.core.links import classify_link
from lead_finder.core.site_scraper import ScrapeBudget, WebsiteScraper
from lead_finder.etl.transform import build_row, chunked, order_rows
from lead_finder.models import (
    EnrichmentOutcome,
    InsufficientCredit,
    PlaceSummary,
    Reservation,
    ResultRow,
    ScrapeResult,
    SearchRequest,
    SearchResponse,
)
from lead_finder.vendors.google_places import PlaceDetailClient, PlaceSearchClient

logger = logging.getLogger(__name__)

ScraperFactory = Callable[[threading.Event], WebsiteScraper]


class RunState(str, enum.Enum):
    IDLE = "idle"
    RESERVING = "reserving"
    SEARCHING = "searching"
    ENRICHING = "enriching"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


def validate_request(keyword, location, raw_api_key) -> SearchRequest:
    fields = {"keyword": keyword, "location": location, "apiKey": raw_api_key}
    missing = [name for name, value in fields.items() if not isinstance(value, str) or not value.strip()]
    if not missing and not normalize_api_key(raw_api_key):
        missing.append("apiKey")
    if missing:
        raise InvalidRequest(f"missing fields: {', '.join(missing)}")
    return SearchRequest(keyword=keyword.strip(), location=location.strip(), raw_api_key=raw_api_key)


class EnrichmentOrchestrator:
    """Builds and executes runs. One instance can serve concurrent requests."""

    def __init__(
        self,
        ledger: CreditLedger,
        *,
        settings: Optional[Settings] = None,
        search_client: Optional[PlaceSearchClient] = None,
        detail_client: Optional[PlaceDetailClient] = None,
        scraper_factory: Optional[ScraperFactory] = None,
    ) -> None:
        self.ledger = ledger
        self.settings = settings or get_settings()
        self.search_client = search_client or PlaceSearchClient(
            max_pages=self.settings.max_pages,
            page_delay=self.settings.page_delay_seconds,
            language=self.settings.places_language,
            timeout=self.settings.request_timeout,
        )
        self.detail_client = detail_client or PlaceDetailClient(
            language=self.settings.places_language,
            timeout=self.settings.request_timeout,
        )
        self.scraper_factory = scraper_factory or self._default_scraper

    def _default_scraper(self, cancel_event: threading.Event) -> WebsiteScraper:
        return WebsiteScraper(timeout=self.settings.scrape_timeout, cancel_event=cancel_event)

    def new_run(self, request: SearchRequest) -> "EnrichmentRun":
        return EnrichmentRun(self, request)

    def run(self, request: SearchRequest) -> SearchResponse:
        return self.new_run(request).execute()


class EnrichmentRun:
    """State of a single request from reservation to the ordered response."""

    def __init__(self, orchestrator: EnrichmentOrchestrator, request: SearchRequest) -> None:
        self.orchestrator = orchestrator
        self.settings = orchestrator.settings
        self.request = request
        self.run_id = uuid.uuid4().hex[:8]
        self.state = RunState.IDLE
        self.key_hash = ""
        self.reservation: Optional[Reservation] = None
        self.places: List[PlaceSummary] = []
        self.outcomes: List[EnrichmentOutcome] = []
        self.timed_out = False
        self.cancel_event = threading.Event()
        self.scrape_budget = ScrapeBudget(self.settings.scrape_cap)
        self._api_key = ""

    def _transition(self, state: RunState) -> None:
        logger.debug("run %s: %s -> %s", self.run_id, self.state.value, state.value)
        self.state = state

    def execute(self) -> SearchResponse:
        try:
            self._validate()
            self._transition(RunState.RESERVING)
            self._reserve()
            self._transition(RunState.SEARCHING)
            self._search()
            self._transition(RunState.ENRICHING)
            self._enrich()
            self._transition(RunState.FINALIZING)
            response = self._finalize()
        except LeadFinderError:
            self._transition(RunState.FAILED)
            raise
        except Exception:
            self._transition(RunState.FAILED)
            logger.exception("run %s failed unexpectedly", self.run_id)
            raise
        self._transition(RunState.COMPLETED)
        return response

    def _validate(self) -> None:
        self.request = validate_request(self.request.keyword, self.request.location, self.request.raw_api_key)
        self._api_key = normalize_api_key(self.request.raw_api_key)
        self.key_hash = hash_key(self._api_key)

    def _reserve(self) -> None:
        result = self.orchestrator.ledger.reserve(self.key_hash)
        if isinstance(result, InsufficientCredit):
            raise InsufficientCreditError("No credits left for this API key.")
        self.reservation = result

    def _search(self) -> None:
        limit = self.reservation.per_run_limit
        logger.info("run %s: searching %r (limit=%d, pool=%s)", self.run_id, self.request.query, limit, self.reservation.pool)
        try:
            results = self.orchestrator.search_client.search(self.request.query, self._api_key, limit)
            self.places = list(islice(results, limit))
        except UpstreamSearchError as exc:
            logger.warning("run %s: search failed (%s): %s", self.run_id, exc.cause, exc)
            self._settle_failed_search()
            raise
        logger.info("run %s: %d places to enrich", self.run_id, len(self.places))

    def _settle_failed_search(self) -> None:
        """The reserved credit stays spent unless refunds are switched on."""
        if not self.settings.refund_on_search_error:
            return
        self.orchestrator.ledger.fund(self.key_hash, self.reservation.pool, 1)
        logger.info("run %s: refunded one %s credit after failed search", self.run_id, self.reservation.pool)

    def _enrich(self) -> None:
        settings = self.settings
        deadline = time.monotonic() + settings.enrich_deadline_seconds
        scraper = self.orchestrator.scraper_factory(self.cancel_event)
        executor = ThreadPoolExecutor(max_workers=settings.enrich_workers, thread_name_prefix=f"enrich-{self.run_id}")
        try:
            for chunk in chunked(self.places, settings.enrich_chunk_size):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._abandon(pending=len(chunk))
                    break
                futures = [executor.submit(self._enrich_place, place, scraper) for place in chunk]
                done, not_done = wait(futures, timeout=remaining)
                # Submission order keeps equal-rating rows stable between runs.
                self.outcomes.extend(future.result() for future in futures if future in done)
                if not_done:
                    for future in not_done:
                        future.cancel()
                    self._abandon(pending=len(not_done))
                    break
        finally:
            executor.shutdown(wait=not self.timed_out, cancel_futures=True)
            scraper.close()

        skipped = [outcome for outcome in self.outcomes if not outcome.ok]
        for outcome in skipped:
            logger.info("run %s: dropped %s (%s)", self.run_id, outcome.place_id, outcome.skipped_reason)

    def _abandon(self, *, pending: int) -> None:
        self.timed_out = True
        self.cancel_event.set()
        logger.warning(
            "run %s: enrichment deadline of %.1fs reached; %d places resolved, abandoning the rest (%d in flight)",
            self.run_id,
            self.settings.enrich_deadline_seconds,
            len(self.outcomes),
            pending,
        )

    def _enrich_place(self, place: PlaceSummary, scraper: WebsiteScraper) -> EnrichmentOutcome:
        """Detail + scrape for one place. Never raises."""
        if self.cancel_event.is_set():
            return EnrichmentOutcome(place_id=place.place_id, skipped_reason="cancelled")
        try:
            detail = self.orchestrator.detail_client.fetch(place.place_id, self._api_key)
            scrape = self._scrape(detail.website, scraper)
            row = build_row(
                place,
                detail,
                scrape,
                keyword=self.request.keyword,
                location=self.request.location,
                default_phone_region=self.settings.default_phone_region,
            )
        except UpstreamDetailError as exc:
            logger.warning("run %s: details failed for %s (%s): %s", self.run_id, place.place_id, exc.cause, exc)
            return EnrichmentOutcome(place_id=place.place_id, skipped_reason=f"detail:{exc.cause}")
        except Exception as exc:  # noqa: BLE001
            logger.exception("run %s: enrichment failed for %s", self.run_id, place.place_id)
            return EnrichmentOutcome(place_id=place.place_id, skipped_reason=f"error:{type(exc).__name__}")
        return EnrichmentOutcome(place_id=place.place_id, row=row)

    def _scrape(self, website: Optional[str], scraper: WebsiteScraper) -> Optional[ScrapeResult]:
        if not website or classify_link(website).is_social:
            return None
        if self.cancel_event.is_set():
            return None
        if not self.scrape_budget.try_acquire():
            logger.debug("run %s: scrape cap reached, skipping %s", self.run_id, website)
            return None
        return scraper.scrape(website)

    def _finalize(self) -> SearchResponse:
        rows: List[ResultRow] = [outcome.row for outcome in self.outcomes if outcome.row is not None]
        ordered = order_rows(rows)
        logger.info(
            "run %s: completed with %d rows (timed_out=%s, scrapes=%d)",
            self.run_id,
            len(ordered),
            self.timed_out,
            self.scrape_budget.used,
        )
        return SearchResponse(
            mode=self.reservation.pool,
            per_run=self.reservation.per_run_limit,
            remaining=self.reservation.remaining,
            results=ordered,
            timed_out=self.timed_out,
        )
