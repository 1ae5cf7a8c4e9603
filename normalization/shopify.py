"""Shopify record normalizers.

Maps Admin REST API orders, products and customers to canonical records.
"""

from typing import Any, Dict, List, Optional

from core.config import StoreConfig
from core.errors import NormalizationWarning
from core.models import (
    Address,
    Customer,
    FinancialStatus,
    LineItem,
    Order,
    Product,
    Variant,
)
from normalization.base import collect_extra, register_normalizer, require_id, text_or_none

FINANCIAL_STATUS_MAP = {
    "pending": FinancialStatus.PENDING,
    "authorized": FinancialStatus.PENDING,
    "partially_paid": FinancialStatus.PARTIALLY_PAID,
    "paid": FinancialStatus.PAID,
    "refunded": FinancialStatus.REFUNDED,
    "partially_refunded": FinancialStatus.REFUNDED,
}

ORDER_FIELDS = (
    "id", "order_number", "name", "total_price", "currency", "created_at",
    "financial_status", "fulfillment_status", "email", "customer",
    "shipping_address", "line_items",
)
PRODUCT_FIELDS = ("id", "title", "body_html", "product_type", "vendor", "tags", "variants")
CUSTOMER_FIELDS = (
    "id", "first_name", "last_name", "email", "orders_count", "total_spent",
    "tags", "addresses",
)


def map_financial_status(value: Optional[str]) -> FinancialStatus:
    if not value:
        return FinancialStatus.PENDING
    return FINANCIAL_STATUS_MAP.get(str(value).lower(), FinancialStatus.UNKNOWN)


def _address(raw: Any) -> Optional[Address]:
    if not isinstance(raw, dict) or not raw:
        return None
    name = raw.get("name")
    if not name:
        name = " ".join(p for p in (raw.get("first_name"), raw.get("last_name")) if p) or None
    return Address(
        name=name,
        address1=raw.get("address1"),
        address2=raw.get("address2"),
        city=raw.get("city"),
        province=raw.get("province"),
        postal_code=raw.get("zip"),
        country=raw.get("country"),
        phone=raw.get("phone"),
    )


def _line_items(raw_items: Any) -> List[LineItem]:
    items = []
    for raw in raw_items or []:
        if not isinstance(raw, dict):
            raise NormalizationWarning("line item is not an object")
        items.append(LineItem(
            title=raw.get("title") or raw.get("name") or "",
            sku=text_or_none(raw.get("sku")),
            external_item_id=text_or_none(raw.get("product_id")),
            external_variant_id=text_or_none(raw.get("variant_id")),
            quantity=raw.get("quantity", 1),
            unit_price=raw.get("price"),
            extra=collect_extra(raw, ("title", "name", "sku", "product_id", "variant_id", "quantity", "price")),
        ))
    return items


@register_normalizer("shopify", "orders")
def normalize_order(raw: Dict[str, Any], store: StoreConfig) -> Order:
    order_id = require_id(raw, "id")

    customer = raw.get("customer") if isinstance(raw.get("customer"), dict) else {}
    username = " ".join(p for p in (customer.get("first_name"), customer.get("last_name")) if p) or None

    try:
        line_items = _line_items(raw.get("line_items"))
    except ValueError as e:
        raise NormalizationWarning(f"invalid line item: {e}", record_id=order_id)
    except NormalizationWarning as e:
        raise NormalizationWarning(e.reason, record_id=order_id)

    if raw.get("total_price") in (None, ""):
        raise NormalizationWarning("missing total_price", record_id=order_id)
    if not raw.get("created_at"):
        raise NormalizationWarning("missing created_at", record_id=order_id)

    return Order(
        platform_type=store.platform_type,
        platform_name=store.platform_name,
        external_order_id=order_id,
        order_number=text_or_none(raw.get("order_number")) or text_or_none(raw.get("name")) or order_id,
        total_price=raw.get("total_price"),
        currency=raw.get("currency"),
        created_at=raw.get("created_at"),
        financial_status=map_financial_status(raw.get("financial_status")),
        fulfillment_status=raw.get("fulfillment_status"),
        buyer_username=username,
        buyer_email=text_or_none(raw.get("email")) or text_or_none(customer.get("email")),
        shipping_address=_address(raw.get("shipping_address")),
        line_items=line_items,
        raw_payload=raw,
        extra=collect_extra(raw, ORDER_FIELDS),
    )


@register_normalizer("shopify", "products")
def normalize_product(raw: Dict[str, Any], store: StoreConfig) -> Product:
    product_id = require_id(raw, "id")

    variants = []
    for variant in raw.get("variants") or []:
        if not isinstance(variant, dict):
            raise NormalizationWarning("variant is not an object", record_id=product_id)
        variants.append(Variant(
            external_variant_id=text_or_none(variant.get("id")),
            sku=text_or_none(variant.get("sku")),
            title=variant.get("title"),
            price=variant.get("price"),
            inventory_quantity=variant.get("inventory_quantity"),
            unit_cost=variant.get("cost"),
            extra=collect_extra(variant, ("id", "sku", "title", "price", "inventory_quantity", "cost")),
        ))

    return Product(
        platform_type=store.platform_type,
        platform_name=store.platform_name,
        external_product_id=product_id,
        title=raw.get("title") or "",
        description=raw.get("body_html"),
        category=text_or_none(raw.get("product_type")),
        vendor=raw.get("vendor"),
        tags=raw.get("tags"),
        variants=variants,
        raw_payload=raw,
        extra=collect_extra(raw, PRODUCT_FIELDS),
    )


@register_normalizer("shopify", "customers")
def normalize_customer(raw: Dict[str, Any], store: StoreConfig) -> Customer:
    customer_id = require_id(raw, "id")

    addresses = [a for a in (_address(r) for r in raw.get("addresses") or []) if a is not None]

    return Customer(
        platform_type=store.platform_type,
        platform_name=store.platform_name,
        external_customer_id=customer_id,
        first_name=raw.get("first_name"),
        last_name=raw.get("last_name"),
        email=text_or_none(raw.get("email")),
        order_count=raw.get("orders_count"),
        total_spent=raw.get("total_spent") or "0",
        tags=raw.get("tags"),
        addresses=addresses,
        raw_payload=raw,
        extra=collect_extra(raw, CUSTOMER_FIELDS),
    )
