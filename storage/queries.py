"""
Read helpers over the commerce database.

- Loading canonical orders / products for aggregation (malformed rows are
  reported, not raised)
- Per-store sync status and incremental-sync checkpoints
- Customers derived from a store's persisted orders (platforms without a
  customer listing)
"""

import json
import sqlite3
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.config import StoreConfig
from core.errors import AggregationInputError, StorageError
from core.models import Address, Customer, Order, Product, to_storage_timestamp
from core.models.canonical import _parse_datetime
from core.observability import get_logger
from storage.db import PathLike, get_db_connection, read_connection

logger = get_logger(__name__)


# =============================================================================
# Row conversion
# =============================================================================

def _loads(row: sqlite3.Row, column: str, default: Any) -> Any:
    value = row[column]
    if value is None or value == "":
        return default
    return json.loads(value)


def row_to_order(row: sqlite3.Row) -> Order:
    """Rebuild a canonical Order from its row.

    Raises:
        AggregationInputError: Stored JSON or values are malformed
    """
    try:
        return Order(
            platform_type=row["platform_type"],
            platform_name=row["platform_name"],
            external_order_id=row["external_order_id"],
            order_number=row["order_number"],
            total_price=row["total_price"],
            currency=row["currency"],
            created_at=row["created_at"],
            financial_status=row["financial_status"],
            fulfillment_status=row["fulfillment_status"],
            order_status=row["order_status"],
            buyer_username=row["buyer_username"],
            buyer_email=row["buyer_email"],
            shipping_address=_loads(row, "shipping_address", None),
            line_items=_loads(row, "line_items", []),
            extra=_loads(row, "extra", {}),
        )
    except (ValueError, TypeError) as e:
        raise AggregationInputError(f"Malformed order row: {e}", record_id=row["external_order_id"]) from e


def row_to_product(row: sqlite3.Row) -> Product:
    """Rebuild a canonical Product from its row.

    Raises:
        AggregationInputError: Stored JSON or values are malformed
    """
    try:
        return Product(
            platform_type=row["platform_type"],
            platform_name=row["platform_name"],
            external_product_id=row["external_product_id"],
            title=row["title"] or "",
            description=row["description"],
            category=row["category"],
            vendor=row["vendor"],
            tags=_loads(row, "tags", []),
            variants=_loads(row, "variants", []),
            extra=_loads(row, "extra", {}),
        )
    except (ValueError, TypeError) as e:
        raise AggregationInputError(f"Malformed product row: {e}", record_id=row["external_product_id"]) from e


def _store_clause(
    platform_type: Optional[str],
    platform_name: Optional[str],
) -> Tuple[List[str], List[Any]]:
    clauses, params = [], []
    if platform_type:
        clauses.append("platform_type = ?")
        params.append(platform_type)
    if platform_name:
        clauses.append("platform_name = ?")
        params.append(platform_name)
    return clauses, params


# =============================================================================
# Aggregation inputs
# =============================================================================

def load_orders(
    db_path: Optional[PathLike] = None,
    platform_type: Optional[str] = None,
    platform_name: Optional[str] = None,
    created_from: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
) -> Tuple[List[Order], List[AggregationInputError]]:
    """Orders matching the filters, newest first.

    Args:
        created_from: Inclusive lower bound on created_at
        created_before: Exclusive upper bound on created_at

    Returns:
        (orders, errors for rows that could not be rebuilt)

    Raises:
        StorageUnavailableError: The database cannot be read
    """
    clauses, params = _store_clause(platform_type, platform_name)
    if created_from is not None:
        clauses.append("created_at >= ?")
        params.append(to_storage_timestamp(created_from))
    if created_before is not None:
        clauses.append("created_at < ?")
        params.append(to_storage_timestamp(created_before))

    sql = "SELECT * FROM orders"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY created_at DESC, external_order_id"

    with read_connection(db_path) as conn:
        rows = conn.execute(sql, params).fetchall()

    orders, errors = [], []
    for row in rows:
        try:
            orders.append(row_to_order(row))
        except AggregationInputError as e:
            errors.append(e)
    return orders, errors


def load_products(
    db_path: Optional[PathLike] = None,
    platform_type: Optional[str] = None,
    platform_name: Optional[str] = None,
) -> Tuple[List[Product], List[AggregationInputError]]:
    """Products matching the store filters, by external_product_id ascending.

    Raises:
        StorageUnavailableError: The database cannot be read
    """
    clauses, params = _store_clause(platform_type, platform_name)
    sql = "SELECT * FROM products"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY platform_type, platform_name, external_product_id"

    with read_connection(db_path) as conn:
        rows = conn.execute(sql, params).fetchall()

    products, errors = [], []
    for row in rows:
        try:
            products.append(row_to_product(row))
        except AggregationInputError as e:
            errors.append(e)
    return products, errors


# =============================================================================
# Sync status / checkpoints
# =============================================================================

def get_checkpoint(store: StoreConfig, db_path: Optional[PathLike] = None) -> Optional[datetime]:
    """When the store's last successful sync started, if any.

    Raises:
        StorageError: The checkpoint table cannot be read
    """
    conn = get_db_connection(db_path)
    try:
        row = conn.execute(
            "SELECT last_success_at FROM sync_checkpoints WHERE platform_type = ? AND platform_name = ?",
            (store.platform_type, store.platform_name),
        ).fetchone()
    except sqlite3.Error as e:
        raise StorageError(f"Cannot read checkpoint of {store.label}: {e}") from e
    finally:
        conn.close()

    if row is None or not row["last_success_at"]:
        return None
    return _parse_datetime(row["last_success_at"])


def save_checkpoint(
    store: StoreConfig,
    run_started_at: datetime,
    mode: str,
    succeeded: bool,
    error: Optional[str] = None,
    db_path: Optional[PathLike] = None,
) -> None:
    """Record a store's sync attempt; last_success_at only moves on success.

    Raises:
        StorageError: The checkpoint could not be written
    """
    started = to_storage_timestamp(run_started_at)
    conn = get_db_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO sync_checkpoints
            (platform_type, platform_name, last_success_at, last_run_at, last_mode, last_error)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(platform_type, platform_name) DO UPDATE SET
                last_success_at = COALESCE(excluded.last_success_at, sync_checkpoints.last_success_at),
                last_run_at = excluded.last_run_at,
                last_mode = excluded.last_mode,
                last_error = excluded.last_error
        """, (
            store.platform_type,
            store.platform_name,
            started if succeeded else None,
            started,
            mode,
            error,
        ))
        conn.commit()
    except sqlite3.Error as e:
        raise StorageError(f"Cannot write checkpoint of {store.label}: {e}") from e
    finally:
        conn.close()


def sync_status(
    db_path: Optional[PathLike] = None,
    stores: Sequence[StoreConfig] = (),
) -> List[Dict[str, Any]]:
    """Per-store record counts, last synced time and checkpoint fields.

    Configured stores are listed first (in configuration order) even when
    nothing has been synced for them yet.

    Raises:
        StorageUnavailableError: The database cannot be read
    """
    status: "OrderedDict[Tuple[str, str], Dict[str, Any]]" = OrderedDict()

    def entry(platform_type: str, platform_name: str) -> Dict[str, Any]:
        key = (platform_type, platform_name)
        if key not in status:
            status[key] = {
                "platform_type": platform_type,
                "platform_name": platform_name,
                "order_count": 0,
                "product_count": 0,
                "customer_count": 0,
                "last_synced_at": None,
                "last_success_at": None,
                "last_run_at": None,
                "last_mode": None,
                "last_error": None,
            }
        return status[key]

    for store in stores:
        entry(store.platform_type, store.platform_name)

    with read_connection(db_path) as conn:
        for table, count_field in (("orders", "order_count"), ("products", "product_count"), ("customers", "customer_count")):
            rows = conn.execute(f"""
                SELECT platform_type, platform_name, COUNT(*) AS n, MAX(synced_at) AS last_synced_at
                FROM {table}
                GROUP BY platform_type, platform_name
            """).fetchall()
            for row in rows:
                item = entry(row["platform_type"], row["platform_name"])
                item[count_field] = row["n"]
                if row["last_synced_at"] and (item["last_synced_at"] is None or row["last_synced_at"] > item["last_synced_at"]):
                    item["last_synced_at"] = row["last_synced_at"]

        for row in conn.execute("SELECT * FROM sync_checkpoints").fetchall():
            item = entry(row["platform_type"], row["platform_name"])
            item["last_success_at"] = row["last_success_at"]
            item["last_run_at"] = row["last_run_at"]
            item["last_mode"] = row["last_mode"]
            item["last_error"] = row["last_error"]

    return list(status.values())


# =============================================================================
# Buyer-derived customers
# =============================================================================

def derive_customers_from_orders(store: StoreConfig, db_path: Optional[PathLike] = None) -> List[Customer]:
    """Build customers from the store's persisted orders.

    Buyers are grouped by email, else username; orders with neither are
    not attributable and are left out. The latest order's shipping address
    becomes the customer's address.

    Raises:
        StorageError: Orders cannot be read
    """
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute("""
            SELECT external_order_id, buyer_username, buyer_email, total_price, shipping_address, created_at
            FROM orders
            WHERE platform_type = ? AND platform_name = ?
              AND (buyer_username IS NOT NULL OR buyer_email IS NOT NULL)
            ORDER BY created_at, external_order_id
        """, (store.platform_type, store.platform_name)).fetchall()
    except sqlite3.Error as e:
        raise StorageError(f"Cannot read orders of {store.label}: {e}") from e
    finally:
        conn.close()

    groups: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for row in rows:
        key = row["buyer_email"] or row["buyer_username"]
        group = groups.setdefault(key, {
            "email": row["buyer_email"],
            "username": row["buyer_username"],
            "order_count": 0,
            "total_spent": Decimal("0"),
            "address": None,
        })
        group["order_count"] += 1
        try:
            group["total_spent"] += Decimal(row["total_price"])
        except InvalidOperation:
            logger.warning(f"Order {row['external_order_id']} has a malformed total, left out of total_spent")
        group["username"] = group["username"] or row["buyer_username"]
        if row["shipping_address"]:
            try:
                group["address"] = json.loads(row["shipping_address"])
            except ValueError:
                logger.warning(f"Order {row['external_order_id']} has a malformed shipping address")

    customers = []
    for key, group in groups.items():
        name_parts = (group["username"] or "").split(" ")
        addresses = [Address(**group["address"])] if isinstance(group["address"], dict) and group["address"] else []
        customers.append(Customer(
            platform_type=store.platform_type,
            platform_name=store.platform_name,
            external_customer_id=key,
            first_name=name_parts[0] or None,
            last_name=" ".join(name_parts[1:]) or None,
            email=group["email"],
            order_count=group["order_count"],
            total_spent=group["total_spent"],
            addresses=addresses,
            raw_payload={"buyer_username": group["username"], "derived_from": "orders"},
        ))
    return customers
