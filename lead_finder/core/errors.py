"""Error taxonomy shared by the pipeline and the HTTP layer.

Every error that can reach a caller carries the HTTP status it maps to and,
where the caller can fix something, a short corrective hint.
"""

from typing import Any, Dict, Optional


class LeadFinderError(RuntimeError):
    status_code = 500
    default_hint: Optional[str] = None

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint if hint is not None else self.default_hint

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.hint:
            payload["hint"] = self.hint
        return payload


class InvalidRequest(LeadFinderError):
    status_code = 400


class Unauthorized(LeadFinderError):
    status_code = 401


class InsufficientCreditError(LeadFinderError):
    status_code = 402
    default_hint = "Top up credits for this API key and try again."


class InternalFault(LeadFinderError):
    status_code = 500


class ScrapeFailure(LeadFinderError):
    """Homepage could not be fetched or parsed. Never leaves the scraper."""


# Classified upstream causes -> (HTTP status, hint)
UPSTREAM_CAUSES: Dict[str, tuple] = {
    "quota": (429, "The Places API quota for this key is exhausted. Raise the quota or wait for it to reset."),
    "rate_limited": (429, "Google is rate limiting this key. Wait a moment and retry."),
    "auth": (403, "The API key was rejected. Check that it was copied correctly and has not expired."),
    "permission": (
        403,
        "Enable the Places API (and billing) for this key in Google Cloud Console, "
        "and make sure its API restrictions allow server-side Places requests.",
    ),
    "malformed_request": (502, "Google rejected the search request. Try a different keyword or location."),
    "timeout": (504, "Google Places did not answer in time. Try again."),
    "unavailable": (502, "Google Places could not be reached. Try again later."),
    "unknown": (502, None),
}


class UpstreamError(LeadFinderError):
    """Places API failure with a cause classification preserved for display."""

    def __init__(self, message: str, *, cause: str = "unknown", upstream_status: Optional[str] = None) -> None:
        if cause not in UPSTREAM_CAUSES:
            cause = "unknown"
        status_code, hint = UPSTREAM_CAUSES[cause]
        super().__init__(message, hint=hint)
        self.cause = cause
        self.status_code = status_code
        self.upstream_status = upstream_status

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["cause"] = self.cause
        return payload


class UpstreamSearchError(UpstreamError):
    pass


class UpstreamDetailError(UpstreamError):
    pass
