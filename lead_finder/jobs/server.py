"""HTTP entrypoint for credit-metered place searches (Cloud Run friendly)."""

from __future__ import annotations

import hmac
import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from lead_finder.core.config import get_settings
from lead_finder.core.errors import InternalFault, InvalidRequest, LeadFinderError, Unauthorized
from lead_finder.core.keys import is_key_hash, key_id
from lead_finder.core.ledger import CreditLedger, build_ledger
from lead_finder.jobs.enrichment import EnrichmentOrchestrator, validate_request

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)
_orchestrator: Optional[EnrichmentOrchestrator] = None


def get_orchestrator() -> EnrichmentOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = EnrichmentOrchestrator(build_ledger())
    return _orchestrator


def get_ledger() -> CreditLedger:
    return get_orchestrator().ledger


@app.errorhandler(LeadFinderError)
def handle_lead_finder_error(exc: LeadFinderError) -> Any:
    return jsonify(exc.to_payload()), exc.status_code


@app.errorhandler(500)
def handle_internal_error(exc: Any) -> Any:
    # Flask has already logged the exception with its traceback.
    return jsonify(InternalFault("internal server error").to_payload()), 500


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; does not touch the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "ledger": "postgres" if settings.database_url else "memory",
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/search")
def search() -> Any:
    """
    Run one credit-metered search.
    Required JSON fields: keyword, location, apiKey
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    search_request = validate_request(payload.get("keyword"), payload.get("location"), payload.get("apiKey"))

    response = get_orchestrator().run(search_request)
    return jsonify(response.to_dict()), 200


@app.post("/usage")
def usage() -> Any:
    """Current balance for a key. Read-only: never creates or charges an account."""
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    ledger_id = key_id(payload.get("apiKey") if isinstance(payload.get("apiKey"), str) else None)
    if not ledger_id:
        raise InvalidRequest("missing fields: apiKey")

    ledger = get_ledger()
    balance = ledger.balance(ledger_id)
    return (
        jsonify(
            {
                "keyId": ledger_id,
                **balance.to_dict(),
                "freePerRun": ledger.free_per_run,
                "paidPerRun": ledger.paid_per_run,
            }
        ),
        200,
    )


def _require_admin() -> None:
    secret = get_settings().admin_secret
    provided = request.headers.get("X-Admin-Secret", "")
    if not secret or not hmac.compare_digest(provided, secret):
        raise Unauthorized("Unauthorized")


def _parse_amount(payload: Dict[str, Any], field: str) -> int:
    raw = payload.get(field) or 0
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        raise InvalidRequest(f"{field} must be an integer")
    try:
        value = int(raw)
    except ValueError as exc:
        raise InvalidRequest(f"{field} must be an integer") from exc
    if value < 0:
        raise InvalidRequest(f"{field} must not be negative")
    return value


@app.post("/credits/topup")
def topup() -> Any:
    """
    Admin funding entry point used by the payment side.
    Header: X-Admin-Secret. JSON: apiKey or keyHash, addFree, addPaid, forceInit.
    """
    _require_admin()
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    ledger_id = payload.get("keyHash") if is_key_hash(payload.get("keyHash")) else None
    if ledger_id is None:
        raw_key = payload.get("apiKey")
        ledger_id = key_id(raw_key) if isinstance(raw_key, str) else ""
    if not ledger_id:
        raise InvalidRequest("apiKey or keyHash required")

    add_free = _parse_amount(payload, "addFree")
    add_paid = _parse_amount(payload, "addPaid")
    force_init = bool(payload.get("forceInit", False))

    ledger = get_ledger()
    if force_init:
        after = ledger.reset(ledger_id)
    elif add_free or add_paid:
        after = ledger.top_up(ledger_id, free=add_free, paid=add_paid)
    else:
        after = ledger.balance(ledger_id)

    logger.info("Top-up for %s: free+%d paid+%d forceInit=%s", ledger_id[:12], add_free, add_paid, force_init)
    return jsonify({"ok": True, "keyId": ledger_id, "after": after.to_dict()}), 200


def main() -> None:
    """Cloud Run injects PORT; fall back to WORKER_PORT locally."""
    settings = get_settings()
    logger.info("[BOOT] Binding on 0.0.0.0:%d", settings.worker_port)
    get_orchestrator()
    app.run(host="0.0.0.0", port=settings.worker_port, threaded=True)


if __name__ == "__main__":
    main()
