"""Storage - SQLite persistence of canonical commerce records."""

from storage.db import (
    DB_PATH,
    get_db_connection,
    read_connection,
    init_db,
    check_db,
)
from storage.upsert import Upserter
from storage.queries import (
    load_orders,
    load_products,
    get_checkpoint,
    save_checkpoint,
    sync_status,
    derive_customers_from_orders,
)

__all__ = [
    "DB_PATH",
    "get_db_connection",
    "read_connection",
    "init_db",
    "check_db",
    "Upserter",
    "load_orders",
    "load_products",
    "get_checkpoint",
    "save_checkpoint",
    "sync_status",
    "derive_customers_from_orders",
]
