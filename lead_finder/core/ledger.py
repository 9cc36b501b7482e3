"""Prepaid credit ledger keyed by the hash of a caller's Places API key.

Every mutation is a single read-modify-write transaction on one account row:
``reserve`` takes one credit (paid before free) or reports that none is left,
``fund`` adds credits to one pool and ``top_up`` to both pools at once.
Funding is not deduplicated here; callers that replay payment events must
dedupe by event id before calling ``fund``.
"""

import logging
import threading
from typing import Dict, Optional, Tuple

from lead_finder.core import db
from lead_finder.core.config import Settings, get_settings
from lead_finder.models import (
    POOL_FREE,
    POOL_PAID,
    POOLS,
    CreditBalance,
    InsufficientCredit,
    Reservation,
    ReservationResult,
)

logger = logging.getLogger(__name__)


class CreditLedger:
    """Interface shared by the ledger backends."""

    def __init__(self, *, free_grant: int, free_per_run: int, paid_per_run: int) -> None:
        self.free_grant = free_grant
        self.free_per_run = free_per_run
        self.paid_per_run = paid_per_run

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "CreditLedger":
        return cls(
            free_grant=settings.free_grant,
            free_per_run=settings.free_per_run,
            paid_per_run=settings.paid_per_run,
            **kwargs,
        )

    def reserve(self, key_hash: str) -> ReservationResult:
        raise NotImplementedError

    def fund(self, key_hash: str, pool: str, amount: int) -> CreditBalance:
        raise NotImplementedError

    def top_up(self, key_hash: str, *, free: int = 0, paid: int = 0) -> CreditBalance:
        """Add to both pools in one transaction."""
        raise NotImplementedError

    def balance(self, key_hash: str) -> CreditBalance:
        raise NotImplementedError

    def reset(self, key_hash: str) -> CreditBalance:
        raise NotImplementedError

    def _decide(self, free: int, paid: int) -> Tuple[Optional[str], CreditBalance]:
        """Pick the pool to charge and the balance after charging it."""
        if paid > 0:
            return POOL_PAID, CreditBalance(free=free, paid=paid - 1)
        if free > 0:
            return POOL_FREE, CreditBalance(free=free - 1, paid=paid)
        return None, CreditBalance(free=max(free, 0), paid=max(paid, 0))

    def _reservation(self, key_hash: str, pool: Optional[str], after: CreditBalance) -> ReservationResult:
        if pool is None:
            logger.info("No credit left for key %s", key_hash[:12])
            return InsufficientCredit(remaining=after)
        per_run = self.paid_per_run if pool == POOL_PAID else self.free_per_run
        logger.info(
            "Reserved one %s credit for key %s (free=%d paid=%d left)",
            pool,
            key_hash[:12],
            after.free,
            after.paid,
        )
        return Reservation(pool=pool, per_run_limit=per_run, remaining=after)


def _validate_funding(pool: str, amount: int) -> None:
    if pool not in POOLS:
        raise ValueError(f"unknown credit pool: {pool!r}")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError("funding amount must be a positive integer")


def _validate_top_up(free: int, paid: int) -> None:
    for amount in (free, paid):
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValueError("top-up amounts must be non-negative integers")
    if not (free or paid):
        raise ValueError("top-up must add at least one credit")


class InMemoryCreditLedger(CreditLedger):
    """Process-local ledger for development and tests. A lock serialises every mutation."""

    def __init__(self, *, free_grant: int, free_per_run: int, paid_per_run: int) -> None:
        super().__init__(free_grant=free_grant, free_per_run=free_per_run, paid_per_run=paid_per_run)
        self._accounts: Dict[str, CreditBalance] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, key_hash: str) -> CreditBalance:
        account = self._accounts.get(key_hash)
        if account is None:
            account = CreditBalance(free=self.free_grant, paid=0)
            self._accounts[key_hash] = account
            logger.info("Created credit account %s with %d free credits", key_hash[:12], self.free_grant)
        return account

    def reserve(self, key_hash: str) -> ReservationResult:
        with self._lock:
            account = self._get_or_create(key_hash)
            pool, after = self._decide(account.free, account.paid)
            if pool is not None:
                self._accounts[key_hash] = after
        return self._reservation(key_hash, pool, after)

    def fund(self, key_hash: str, pool: str, amount: int) -> CreditBalance:
        _validate_funding(pool, amount)
        with self._lock:
            account = self._get_or_create(key_hash)
            if pool == POOL_PAID:
                after = CreditBalance(free=account.free, paid=account.paid + amount)
            else:
                after = CreditBalance(free=account.free + amount, paid=account.paid)
            self._accounts[key_hash] = after
        logger.info("Funded key %s with %d %s credits", key_hash[:12], amount, pool)
        return after

    def top_up(self, key_hash: str, *, free: int = 0, paid: int = 0) -> CreditBalance:
        _validate_top_up(free, paid)
        with self._lock:
            account = self._get_or_create(key_hash)
            after = CreditBalance(free=account.free + free, paid=account.paid + paid)
            self._accounts[key_hash] = after
        logger.info("Topped up key %s with free+%d paid+%d", key_hash[:12], free, paid)
        return after

    def balance(self, key_hash: str) -> CreditBalance:
        with self._lock:
            account = self._accounts.get(key_hash)
        return account if account is not None else CreditBalance(free=self.free_grant, paid=0)

    def reset(self, key_hash: str) -> CreditBalance:
        with self._lock:
            after = CreditBalance(free=self.free_grant, paid=0)
            self._accounts[key_hash] = after
        logger.info("Reset credit account %s", key_hash[:12])
        return after


_ENSURE_ACCOUNT = """
INSERT INTO credit_accounts (key_hash, free_credits, paid_credits, created_at, updated_at)
VALUES (%(key_hash)s, %(free_grant)s, 0, NOW(), NOW())
ON CONFLICT (key_hash) DO NOTHING;
"""

_LOCK_ACCOUNT = """
SELECT free_credits, paid_credits
FROM credit_accounts
WHERE key_hash = %(key_hash)s
FOR UPDATE;
"""

_CHARGE_ACCOUNT = """
UPDATE credit_accounts
SET free_credits = %(free)s,
    paid_credits = %(paid)s,
    updated_at = NOW()
WHERE key_hash = %(key_hash)s;
"""

_FUND_FREE = """
INSERT INTO credit_accounts (key_hash, free_credits, paid_credits, created_at, updated_at)
VALUES (%(key_hash)s, %(free_grant)s + %(amount)s, 0, NOW(), NOW())
ON CONFLICT (key_hash) DO UPDATE SET
    free_credits = credit_accounts.free_credits + %(amount)s,
    updated_at = NOW()
RETURNING free_credits, paid_credits;
"""

_FUND_PAID = """
INSERT INTO credit_accounts (key_hash, free_credits, paid_credits, created_at, updated_at)
VALUES (%(key_hash)s, %(free_grant)s, %(amount)s, NOW(), NOW())
ON CONFLICT (key_hash) DO UPDATE SET
    paid_credits = credit_accounts.paid_credits + %(amount)s,
    updated_at = NOW()
RETURNING free_credits, paid_credits;
"""

_TOP_UP = """
INSERT INTO credit_accounts (key_hash, free_credits, paid_credits, created_at, updated_at)
VALUES (%(key_hash)s, %(free_grant)s + %(free)s, %(paid)s, NOW(), NOW())
ON CONFLICT (key_hash) DO UPDATE SET
    free_credits = credit_accounts.free_credits + %(free)s,
    paid_credits = credit_accounts.paid_credits + %(paid)s,
    updated_at = NOW()
RETURNING free_credits, paid_credits;
"""

_SELECT_BALANCE = """
SELECT free_credits, paid_credits FROM credit_accounts WHERE key_hash = %(key_hash)s;
"""

_RESET_ACCOUNT = """
INSERT INTO credit_accounts (key_hash, free_credits, paid_credits, created_at, updated_at)
VALUES (%(key_hash)s, %(free_grant)s, 0, NOW(), NOW())
ON CONFLICT (key_hash) DO UPDATE SET
    free_credits = EXCLUDED.free_credits,
    paid_credits = 0,
    updated_at = NOW()
RETURNING free_credits, paid_credits;
"""


class PostgresCreditLedger(CreditLedger):
    """Ledger stored in the ``credit_accounts`` table.

    ``reserve`` locks the account row with ``SELECT ... FOR UPDATE`` so two
    concurrent reservations on one key are applied one after the other.
    """

    def _execute_returning(self, statement: str, params) -> tuple:
        with db.get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(statement, params)
                    row = cur.fetchone()
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return row

    def reserve(self, key_hash: str) -> ReservationResult:
        params = {"key_hash": key_hash, "free_grant": self.free_grant}
        with db.get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(_ENSURE_ACCOUNT, params)
                    cur.execute(_LOCK_ACCOUNT, params)
                    row = cur.fetchone()
                    if row is None:
                        raise RuntimeError(f"credit account {key_hash[:12]} vanished during reservation")
                    free, paid = int(row[0]), int(row[1])
                    pool, after = self._decide(free, paid)
                    if pool is not None:
                        cur.execute(_CHARGE_ACCOUNT, {"key_hash": key_hash, "free": after.free, "paid": after.paid})
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return self._reservation(key_hash, pool, after)

    def fund(self, key_hash: str, pool: str, amount: int) -> CreditBalance:
        _validate_funding(pool, amount)
        statement = _FUND_PAID if pool == POOL_PAID else _FUND_FREE
        row = self._execute_returning(statement, {"key_hash": key_hash, "free_grant": self.free_grant, "amount": amount})
        logger.info("Funded key %s with %d %s credits", key_hash[:12], amount, pool)
        return CreditBalance(free=int(row[0]), paid=int(row[1]))

    def top_up(self, key_hash: str, *, free: int = 0, paid: int = 0) -> CreditBalance:
        _validate_top_up(free, paid)
        row = self._execute_returning(
            _TOP_UP, {"key_hash": key_hash, "free_grant": self.free_grant, "free": free, "paid": paid}
        )
        logger.info("Topped up key %s with free+%d paid+%d", key_hash[:12], free, paid)
        return CreditBalance(free=int(row[0]), paid=int(row[1]))

    def balance(self, key_hash: str) -> CreditBalance:
        with db.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_SELECT_BALANCE, {"key_hash": key_hash})
                row = cur.fetchone()
            conn.commit()
        if row is None:
            return CreditBalance(free=self.free_grant, paid=0)
        return CreditBalance(free=int(row[0]), paid=int(row[1]))

    def reset(self, key_hash: str) -> CreditBalance:
        row = self._execute_returning(_RESET_ACCOUNT, {"key_hash": key_hash, "free_grant": self.free_grant})
        logger.info("Reset credit account %s", key_hash[:12])
        return CreditBalance(free=int(row[0]), paid=int(row[1]))


def build_ledger(settings: Optional[Settings] = None) -> CreditLedger:
    """Postgres ledger when DATABASE_URL is configured, in-process ledger otherwise."""
    settings = settings or get_settings()
    if settings.database_url:
        db.ensure_schema()
        return PostgresCreditLedger.from_settings(settings)
    logger.warning("Using the in-process credit ledger; balances are lost on restart.")
    return InMemoryCreditLedger.from_settings(settings)
