"""eBay record normalizers.

Input records are Trading API elements converted by
``connectors.ebay.trading.element_to_dict``: leaves are strings, amounts are
``{"value": ..., "@currencyID": ...}`` and repeated elements are lists.
"""

from typing import Any, Dict, List, Optional

from connectors.ebay.trading import as_list, leaf_text
from core.config import StoreConfig
from core.errors import NormalizationWarning
from core.models import Address, FinancialStatus, LineItem, Order, Product, Variant
from normalization.base import collect_extra, register_normalizer, require_id

ORDER_STATUS_MAP = {
    "Completed": FinancialStatus.PAID,
    "Active": FinancialStatus.PENDING,
    "InProcess": FinancialStatus.PENDING,
    "Cancelled": FinancialStatus.REFUNDED,
    "CancelPending": FinancialStatus.REFUNDED,
}

DEFAULT_CATEGORY = "Uncategorized"
DEFAULT_VENDOR = "eBay Seller"

ORDER_FIELDS = (
    "OrderID", "OrderStatus", "CreatedTime", "Total", "BuyerUserID",
    "TransactionArray", "ShippingAddress", "ShippedTime",
)
ITEM_FIELDS = (
    "ItemID", "Title", "Description", "SKU", "Quantity", "SellingStatus",
    "CurrentPrice", "QuantitySold", "PrimaryCategory",
)


def map_order_status(value: Optional[str]) -> FinancialStatus:
    if not value:
        return FinancialStatus.PENDING
    return ORDER_STATUS_MAP.get(value, FinancialStatus.UNKNOWN)


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _currency(value: Any) -> Optional[str]:
    return value.get("@currencyID") if isinstance(value, dict) else None


def _address(raw: Any) -> Optional[Address]:
    raw = _dict(raw)
    if not raw:
        return None
    return Address(
        name=leaf_text(raw.get("Name")),
        address1=leaf_text(raw.get("Street1")),
        address2=leaf_text(raw.get("Street2")),
        city=leaf_text(raw.get("CityName")),
        province=leaf_text(raw.get("StateOrProvince")),
        postal_code=leaf_text(raw.get("PostalCode")),
        country=leaf_text(raw.get("Country")),
        phone=leaf_text(raw.get("Phone")),
    )


def _transactions(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [t for t in as_list(_dict(raw.get("TransactionArray")).get("Transaction")) if isinstance(t, dict)]


def _buyer_email(transactions: List[Dict[str, Any]]) -> Optional[str]:
    # eBay masks emails as "Invalid Request" outside the order's privacy window
    for transaction in transactions:
        email = leaf_text(_dict(transaction.get("Buyer")).get("Email"))
        if email and "@" in email:
            return email
    return None


@register_normalizer("ebay", "orders")
def normalize_order(raw: Dict[str, Any], store: StoreConfig) -> Order:
    order_id = require_id(raw, "OrderID")

    total = leaf_text(raw.get("Total"))
    if total is None:
        raise NormalizationWarning("missing Total", record_id=order_id)
    created = leaf_text(raw.get("CreatedTime"))
    if created is None:
        raise NormalizationWarning("missing CreatedTime", record_id=order_id)

    transactions = _transactions(raw)
    try:
        line_items = [
            LineItem(
                title=leaf_text(_dict(t.get("Item")).get("Title")) or "",
                sku=leaf_text(_dict(t.get("Variation")).get("SKU")) or leaf_text(_dict(t.get("Item")).get("SKU")),
                external_item_id=leaf_text(_dict(t.get("Item")).get("ItemID")),
                quantity=leaf_text(t.get("QuantityPurchased")) or 1,
                unit_price=leaf_text(t.get("TransactionPrice")) or "0",
                extra={"transaction_id": leaf_text(t.get("TransactionID"))},
            )
            for t in transactions
        ]
    except ValueError as e:
        raise NormalizationWarning(f"invalid transaction: {e}", record_id=order_id)

    return Order(
        platform_type=store.platform_type,
        platform_name=store.platform_name,
        external_order_id=order_id,
        order_number=order_id,
        total_price=total,
        currency=_currency(raw.get("Total")),
        created_at=created,
        financial_status=map_order_status(leaf_text(raw.get("OrderStatus"))),
        fulfillment_status="fulfilled" if leaf_text(raw.get("ShippedTime")) else None,
        order_status=leaf_text(raw.get("OrderStatus")),
        buyer_username=leaf_text(raw.get("BuyerUserID")),
        buyer_email=_buyer_email(transactions),
        shipping_address=_address(raw.get("ShippingAddress")),
        line_items=line_items,
        raw_payload=raw,
        extra=collect_extra(raw, ORDER_FIELDS),
    )


@register_normalizer("ebay", "products")
def normalize_product(raw: Dict[str, Any], store: StoreConfig) -> Product:
    item_id = require_id(raw, "ItemID")

    selling_status = _dict(raw.get("SellingStatus"))
    price = leaf_text(selling_status.get("CurrentPrice")) or leaf_text(raw.get("CurrentPrice"))
    if price is None:
        raise NormalizationWarning("missing CurrentPrice", record_id=item_id)

    try:
        quantity = int(leaf_text(raw.get("Quantity")) or 0)
        sold = int(leaf_text(selling_status.get("QuantitySold")) or leaf_text(raw.get("QuantitySold")) or 0)
    except ValueError as e:
        raise NormalizationWarning(f"invalid quantity: {e}", record_id=item_id)

    title = leaf_text(raw.get("Title")) or ""
    variant = Variant(
        external_variant_id=item_id,
        sku=leaf_text(raw.get("SKU")) or item_id,
        title=title,
        price=price,
        inventory_quantity=quantity - sold,
        unit_cost=None,
    )

    return Product(
        platform_type=store.platform_type,
        platform_name=store.platform_name,
        external_product_id=item_id,
        title=title,
        description=leaf_text(raw.get("Description")),
        category=leaf_text(_dict(raw.get("PrimaryCategory")).get("CategoryName")) or DEFAULT_CATEGORY,
        vendor=DEFAULT_VENDOR,
        tags=[],
        variants=[variant],
        raw_payload=raw,
        extra=collect_extra(raw, ITEM_FIELDS),
    )
