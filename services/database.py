"""
SQLite schema and connection handling shared by the stores.

Prices are stored as integer minor units so the eligibility predicate
compares integers. Timestamps are UTC ISO-8601 strings with a fixed
microsecond format so they sort lexically.
"""
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from core.exceptions import OrderStoreError

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 10

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS products (
        id TEXT PRIMARY KEY,
        merchant_id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        platform TEXT NOT NULL DEFAULT 'manual',
        external_id TEXT,
        currency TEXT NOT NULL,
        current_price_minor INTEGER NOT NULL CHECK (current_price_minor >= 0),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deleted_at TEXT,
        UNIQUE (platform, external_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS price_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id TEXT NOT NULL REFERENCES products(id),
        price_minor INTEGER NOT NULL CHECK (price_minor >= 0),
        currency TEXT NOT NULL,
        source TEXT NOT NULL,
        recorded_at TEXT NOT NULL
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS price_history_no_update
    BEFORE UPDATE ON price_history
    BEGIN
        SELECT RAISE(ABORT, 'price_history is append-only');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS price_history_no_delete
    BEFORE DELETE ON price_history
    BEGIN
        SELECT RAISE(ABORT, 'price_history is append-only');
    END
    """,
    """
    CREATE TABLE IF NOT EXISTS buy_orders (
        id TEXT PRIMARY KEY,
        merchant_id TEXT NOT NULL,
        product_id TEXT NOT NULL REFERENCES products(id),
        customer_id TEXT NOT NULL,
        target_price_minor INTEGER NOT NULL CHECK (target_price_minor >= 0),
        current_price_minor INTEGER NOT NULL CHECK (current_price_minor >= 0),
        currency TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('pending', 'monitoring', 'fulfilled', 'cancelled', 'expired')),
        payment_status TEXT NOT NULL DEFAULT 'none'
            CHECK (payment_status IN ('none', 'authorized', 'captured', 'released', 'failed', 'code_issued')),
        expires_at TEXT NOT NULL,
        fulfilled_at TEXT,
        fulfilled_price_minor INTEGER,
        escrow_reference TEXT UNIQUE,
        discount_code TEXT,
        created_at TEXT NOT NULL,
        cancelled_at TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_buy_orders_matching
    ON buy_orders (product_id, status, target_price_minor)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_buy_orders_expiry
    ON buy_orders (status, expires_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        read_at TEXT
    )
    """,
]


def format_ts(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@contextmanager
def connect(db_path: str) -> Iterator[sqlite3.Connection]:
    """
    Open a connection, commit on success, roll back on error and always close.
    sqlite3 errors surface as OrderStoreError.
    """
    try:
        conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS)
    except sqlite3.Error as e:
        raise OrderStoreError(f"Cannot open database {db_path}: {e}") from e
    conn.row_factory = sqlite3.Row
    try:
        with conn:
            yield conn
    except sqlite3.Error as e:
        logger.error(f"Database error on {db_path}: {e}")
        raise OrderStoreError(str(e)) from e
    finally:
        conn.close()


def init_db(db_path: str) -> str:
    """Create tables, indexes and triggers if missing. Returns db_path."""
    directory = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(directory, exist_ok=True)
    with connect(db_path) as conn:
        for statement in SCHEMA:
            conn.execute(statement)
    logger.info(f"Database ready at {db_path}")
    return db_path
