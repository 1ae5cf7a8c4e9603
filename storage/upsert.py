"""Idempotent persistence of canonical records.

Each record is written with INSERT OR REPLACE keyed by its identity tuple
and committed on its own, so replaying a batch after a crash converges to
the same stored state. Batches for the same (store, entity) are serialized.
"""

import json
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

from core.errors import StorageError
from core.models import CanonicalBase, Customer, Order, Product, to_storage_timestamp
from core.observability import get_logger
from storage.db import PathLike, get_db_connection, resolve_db_path

logger = get_logger(__name__)

_locks: Dict[Tuple[str, str, str], threading.Lock] = {}
_locks_guard = threading.Lock()


def _batch_lock(platform_type: str, platform_name: str, kind: str) -> threading.Lock:
    key = (platform_type, platform_name, kind)
    with _locks_guard:
        if key not in _locks:
            _locks[key] = threading.Lock()
        return _locks[key]


def _json(value) -> str:
    return json.dumps(value, default=str)


def _order_row(order: Order, synced_at: str) -> tuple:
    return (
        order.platform_type,
        order.platform_name,
        order.external_order_id,
        order.order_number,
        str(order.total_price),
        order.currency,
        to_storage_timestamp(order.created_at),
        order.financial_status.value,
        order.fulfillment_status,
        order.order_status,
        order.buyer_username,
        order.buyer_email,
        _json(order.shipping_address.model_dump(mode="json")) if order.shipping_address else None,
        _json([item.model_dump(mode="json") for item in order.line_items]),
        _json(order.extra),
        _json(order.raw_payload),
        synced_at,
    )


def _product_row(product: Product, synced_at: str) -> tuple:
    return (
        product.platform_type,
        product.platform_name,
        product.external_product_id,
        product.title,
        product.description,
        product.category,
        product.vendor,
        _json(product.tags),
        _json([variant.model_dump(mode="json") for variant in product.variants]),
        _json(product.extra),
        _json(product.raw_payload),
        synced_at,
    )


def _customer_row(customer: Customer, synced_at: str) -> tuple:
    return (
        customer.platform_type,
        customer.platform_name,
        customer.external_customer_id,
        customer.first_name,
        customer.last_name,
        customer.email,
        customer.order_count,
        str(customer.total_spent),
        _json(customer.tags),
        _json([address.model_dump(mode="json") for address in customer.addresses]),
        _json(customer.extra),
        _json(customer.raw_payload),
        synced_at,
    )


_STATEMENTS = {
    "orders": ("""
        INSERT OR REPLACE INTO orders
        (platform_type, platform_name, external_order_id, order_number, total_price,
         currency, created_at, financial_status, fulfillment_status, order_status,
         buyer_username, buyer_email, shipping_address, line_items, extra, raw_data, synced_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, _order_row),
    "products": ("""
        INSERT OR REPLACE INTO products
        (platform_type, platform_name, external_product_id, title, description,
         category, vendor, tags, variants, extra, raw_data, synced_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, _product_row),
    "customers": ("""
        INSERT OR REPLACE INTO customers
        (platform_type, platform_name, external_customer_id, first_name, last_name,
         email, order_count, total_spent, tags, addresses, extra, raw_data, synced_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, _customer_row),
}


class Upserter:
    """Writes canonical records into the commerce database.

    Usage:
        upserter = Upserter(db_path)
        written = upserter.upsert("orders", orders)
    """

    def __init__(
        self,
        db_path: Optional[PathLike] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db_path = db_path
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def upsert(self, kind: str, records: Sequence[CanonicalBase]) -> int:
        """Persist a batch of one entity kind for one store.

        Args:
            kind: "orders", "products" or "customers"
            records: Canonical records of a single store

        Returns:
            Number of records written

        Raises:
            StorageError: A write failed; ``written`` records were already committed
        """
        if not records:
            return 0
        if kind not in _STATEMENTS:
            raise ValueError(f"Unknown record kind: {kind}")

        sql, to_row = _STATEMENTS[kind]
        first = records[0]
        synced_at = to_storage_timestamp(self._clock())
        written = 0

        with _batch_lock(first.platform_type, first.platform_name, kind):
            try:
                conn = get_db_connection(self.db_path)
            except sqlite3.Error as e:
                raise StorageError(f"Cannot open {resolve_db_path(self.db_path)}: {e}") from e
            try:
                for record in records:
                    conn.execute(sql, to_row(record, synced_at))
                    conn.commit()
                    written += 1
            except sqlite3.Error as e:
                raise StorageError(f"Failed writing {kind} after {written} records: {e}", written=written) from e
            finally:
                conn.close()

        logger.debug(f"Upserted {written} {kind}", extra_fields={"kind": kind, "written": written})
        return written

    def upsert_orders(self, orders: Iterable[Order]) -> int:
        return self.upsert("orders", list(orders))

    def upsert_products(self, products: Iterable[Product]) -> int:
        return self.upsert("products", list(products))

    def upsert_customers(self, customers: Iterable[Customer]) -> int:
        return self.upsert("customers", list(customers))
