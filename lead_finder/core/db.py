"""Database helpers for the credit ledger."""

import logging
from contextlib import contextmanager
from typing import Optional

from psycopg2 import pool

from lead_finder.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None

_CREATE_CREDIT_ACCOUNTS = """
CREATE TABLE IF NOT EXISTS credit_accounts (
    key_hash CHAR(64) PRIMARY KEY,
    free_credits INTEGER NOT NULL DEFAULT 0 CHECK (free_credits >= 0),
    paid_credits INTEGER NOT NULL DEFAULT 0 CHECK (paid_credits >= 0),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def init_pool(minconn: int = 1, maxconn: int = 10) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


def ensure_schema() -> None:
    """Create the ledger table when it does not exist yet."""
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_CREATE_CREDIT_ACCOUNTS)
        conn.commit()
    logger.info("credit_accounts schema ensured")
