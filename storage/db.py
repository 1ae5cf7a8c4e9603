"""
Commerce Database

Creates and manages the synced-data tables:
- orders: one row per (platform_type, platform_name, external_order_id)
- products: one row per (platform_type, platform_name, external_product_id)
- customers: one row per (platform_type, platform_name, external_customer_id)
- sync_checkpoints: last successful sync per store

Monetary values are stored as decimal strings and timestamps as UTC
"YYYY-MM-DDTHH:MM:SSZ" strings, so both sort and compare as text.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from core.config import DEFAULT_DB_PATH
from core.errors import StorageUnavailableError
from core.observability import get_logger

logger = get_logger(__name__)

DB_PATH = DEFAULT_DB_PATH

PathLike = Union[str, Path]


def resolve_db_path(db_path: Optional[PathLike] = None) -> Path:
    return Path(db_path) if db_path is not None else Path(DB_PATH)


def get_db_connection(db_path: Optional[PathLike] = None) -> sqlite3.Connection:
    """Get a read-write database connection with row factory."""
    conn = sqlite3.connect(str(resolve_db_path(db_path)), timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def read_connection(db_path: Optional[PathLike] = None) -> Iterator[sqlite3.Connection]:
    """Connection for read-side queries.

    The database file must already exist. Any sqlite3 failure while the
    connection is in use is reported as StorageUnavailableError.
    """
    path = resolve_db_path(db_path)
    try:
        conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True, timeout=30)
    except sqlite3.Error as e:
        logger.error(f"Cannot open database {path}: {e}")
        raise StorageUnavailableError(f"storage unavailable: {e}") from e

    conn.row_factory = sqlite3.Row
    try:
        yield conn
    except sqlite3.Error as e:
        logger.error(f"Database query failed: {e}")
        raise StorageUnavailableError(f"storage unavailable: {e}") from e
    finally:
        conn.close()


def init_db(db_path: Optional[PathLike] = None) -> None:
    """
    Initialize the database tables.

    Creates:
    - orders / products / customers with their identity constraints
    - sync_checkpoints for incremental sync
    """
    path = resolve_db_path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_db_connection(path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                platform_type TEXT NOT NULL,
                platform_name TEXT NOT NULL,
                external_order_id TEXT NOT NULL,
                order_number TEXT,
                total_price TEXT NOT NULL,
                currency TEXT,
                created_at TEXT NOT NULL,
                financial_status TEXT NOT NULL,
                fulfillment_status TEXT,
                order_status TEXT,
                buyer_username TEXT,
                buyer_email TEXT,
                shipping_address TEXT,
                line_items TEXT NOT NULL DEFAULT '[]',
                extra TEXT NOT NULL DEFAULT '{}',
                raw_data TEXT NOT NULL DEFAULT '{}',
                synced_at TEXT NOT NULL,

                UNIQUE(platform_type, platform_name, external_order_id)
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_store_created
            ON orders(platform_type, platform_name, created_at)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_created
            ON orders(created_at)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                platform_type TEXT NOT NULL,
                platform_name TEXT NOT NULL,
                external_product_id TEXT NOT NULL,
                title TEXT,
                description TEXT,
                category TEXT,
                vendor TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                variants TEXT NOT NULL DEFAULT '[]',
                extra TEXT NOT NULL DEFAULT '{}',
                raw_data TEXT NOT NULL DEFAULT '{}',
                synced_at TEXT NOT NULL,

                UNIQUE(platform_type, platform_name, external_product_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                platform_type TEXT NOT NULL,
                platform_name TEXT NOT NULL,
                external_customer_id TEXT NOT NULL,
                first_name TEXT,
                last_name TEXT,
                email TEXT,
                order_count INTEGER NOT NULL DEFAULT 0,
                total_spent TEXT NOT NULL DEFAULT '0',
                tags TEXT NOT NULL DEFAULT '[]',
                addresses TEXT NOT NULL DEFAULT '[]',
                extra TEXT NOT NULL DEFAULT '{}',
                raw_data TEXT NOT NULL DEFAULT '{}',
                synced_at TEXT NOT NULL,

                UNIQUE(platform_type, platform_name, external_customer_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sync_checkpoints (
                platform_type TEXT NOT NULL,
                platform_name TEXT NOT NULL,
                last_success_at TEXT,
                last_run_at TEXT,
                last_mode TEXT,
                last_error TEXT,

                PRIMARY KEY (platform_type, platform_name)
            )
        """)

        conn.commit()
    finally:
        conn.close()

    logger.info(f"Commerce database initialized at {path}")


def check_db(db_path: Optional[PathLike] = None) -> bool:
    """True when the database exists and holds the orders table."""
    try:
        with read_connection(db_path) as conn:
            conn.execute("SELECT 1 FROM orders LIMIT 1").fetchall()
        return True
    except StorageUnavailableError:
        return False
