"""CLI to inspect, and optionally top up, the ledger account behind a Places API key."""

import argparse
import logging
from typing import List, Optional

from lead_finder.core.keys import key_id, normalize_api_key
from lead_finder.core.ledger import build_ledger

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Show the ledger id for a Google Places API key")
    parser.add_argument("api_key", help="Raw API key as pasted by the user")
    parser.add_argument("--balance", action="store_true", help="Print the current credit balance")
    parser.add_argument("--add-free", dest="add_free", type=int, default=0, help="Free credits to add")
    parser.add_argument("--add-paid", dest="add_paid", type=int, default=0, help="Paid credits to add")
    return parser


def run(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    normalized = normalize_api_key(args.api_key)
    if not normalized:
        parser.error("the API key is empty after normalization")
    if args.add_free < 0 or args.add_paid < 0:
        parser.error("credit amounts must not be negative")

    ledger_id = key_id(args.api_key)
    print(f"normalized key: {normalized}")
    print(f"ledger id:      {ledger_id}")

    if not (args.balance or args.add_free or args.add_paid):
        return 0

    ledger = build_ledger()
    if args.add_free or args.add_paid:
        balance = ledger.top_up(ledger_id, free=args.add_free, paid=args.add_paid)
    else:
        balance = ledger.balance(ledger_id)
    print(f"credits:        free={balance.free} paid={balance.paid} total={balance.total}")
    return 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    raise SystemExit(run())


if __name__ == "__main__":
    main()
