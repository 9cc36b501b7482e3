"""Core data models shared by the search and enrichment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

POOL_FREE = "free"
POOL_PAID = "paid"
POOLS = (POOL_FREE, POOL_PAID)


@dataclass(slots=True)
class SearchRequest:
    keyword: str
    location: str
    raw_api_key: str

    @property
    def query(self) -> str:
        return f"{self.keyword} {self.location}".strip()


@dataclass(frozen=True, slots=True)
class CreditBalance:
    free: int = 0
    paid: int = 0

    @property
    def total(self) -> int:
        return self.free + self.paid

    def to_dict(self) -> Dict[str, int]:
        return {"free": self.free, "paid": self.paid, "total": self.total}


@dataclass(frozen=True, slots=True)
class Reservation:
    """One credit was taken from ``pool``; the run may fetch ``per_run_limit`` places."""

    pool: str
    per_run_limit: int
    remaining: CreditBalance


@dataclass(frozen=True, slots=True)
class InsufficientCredit:
    remaining: CreditBalance


ReservationResult = Union[Reservation, InsufficientCredit]


@dataclass(slots=True)
class PlaceSummary:
    """A text-search hit. ``place_id`` joins it to its details."""

    place_id: str
    name: Optional[str] = None
    formatted_address: Optional[str] = None
    rating: Optional[float] = None


@dataclass(slots=True)
class PlaceDetail:
    place_id: str
    name: Optional[str] = None
    formatted_address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None


@dataclass(frozen=True, slots=True)
class LinkClassification:
    is_social: bool
    is_profile_network: bool
    canonical_url: str


@dataclass(slots=True)
class ScrapeResult:
    email: Optional[str] = None
    social: Optional[str] = None


@dataclass(slots=True)
class ResultRow:
    name: str
    address: str
    phone: str
    rating: Optional[float] = None
    homepage: Optional[str] = None
    email: Optional[str] = None
    social: Optional[str] = None
    keyword: str = ""
    location: str = ""
    index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "storeName": self.name,
            "address": self.address,
            "phone": self.phone,
            "rating": self.rating,
            "homepage": self.homepage,
            "email": self.email,
            "social": self.social,
            "keyword": self.keyword,
            "location": self.location,
        }


@dataclass(slots=True)
class EnrichmentOutcome:
    """Result of one place's detail + scrape unit: a row, or the reason it was dropped."""

    place_id: str
    row: Optional[ResultRow] = None
    skipped_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.row is not None


@dataclass(slots=True)
class SearchResponse:
    mode: str
    per_run: int
    remaining: CreditBalance
    results: List[ResultRow] = field(default_factory=list)
    timed_out: bool = False

    @property
    def count(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "perRun": self.per_run,
            "remaining": self.remaining.to_dict(),
            "count": self.count,
            "results": [row.to_dict() for row in self.results],
            "timedOut": self.timed_out,
        }
