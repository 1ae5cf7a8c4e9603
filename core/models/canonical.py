"""Core canonical data models - platform-neutral commerce records.

These models represent synced data in a standardized shape that is
independent of any selling platform (Shopify, eBay, etc.).

Platform-specific field mappings are handled in /normalization/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ConfigDict
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers (handle the formats platforms send)
# =============================================================================

def _parse_decimal(value):
    """Parse decimal from strings ("12.50", "$1,200.00"), ints or floats."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Boolean is not a monetary value")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        s = s.replace("$", "").replace(",", "")
        try:
            result = Decimal(s)
        except InvalidOperation:
            raise ValueError(f"Cannot parse decimal: {value!r}")
        if not result.is_finite():
            raise ValueError(f"Cannot parse decimal: {value!r}")
        return result
    return value


def _parse_int(value):
    """Parse integer from various formats."""
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        return int(float(value.strip().replace(",", "")))
    return value


def _parse_datetime(value):
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        value = datetime.fromisoformat(s)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return value


def _parse_tags(value):
    """Tags arrive as a list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [t.strip() for t in value.split(",") if t.strip()]
    return [str(t).strip() for t in value if str(t).strip()]


# Annotated types for automatic parsing
DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
IntValue = Annotated[int, BeforeValidator(_parse_int)]
DateTimeValue = Annotated[datetime, BeforeValidator(_parse_datetime)]
TagList = Annotated[List[str], BeforeValidator(_parse_tags)]


def to_storage_timestamp(value: datetime) -> str:
    """Render a datetime as the sortable UTC string used in storage."""
    return _parse_datetime(value).strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Enums
# =============================================================================

class PlatformType(str, Enum):
    """Selling platforms with a registered adapter."""
    SHOPIFY = "shopify"
    EBAY = "ebay"


class FinancialStatus(str, Enum):
    """Payment state of an order."""
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"


OUTSTANDING_STATUSES = (FinancialStatus.PENDING, FinancialStatus.PARTIALLY_PAID)


# =============================================================================
# Base Model
# =============================================================================

class CanonicalBase(BaseModel):
    """Base model for all canonical data structures.

    ``extra`` holds source fields the canonical shape does not model, so
    they survive a round trip through storage.
    """
    model_config = ConfigDict(populate_by_name=True)

    extra: Dict[str, Any] = Field(default_factory=dict)


class StoreScoped(CanonicalBase):
    """A record owned by one store on one platform."""
    platform_type: str
    platform_name: str

    @property
    def store_key(self) -> Tuple[str, str]:
        return (self.platform_type, self.platform_name)


# =============================================================================
# Nested Records
# =============================================================================

class Address(CanonicalBase):
    """Postal address (shipping or customer)."""
    name: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None


class LineItem(CanonicalBase):
    """One order line. ``external_item_id`` references the platform product."""
    title: str = ""
    sku: Optional[str] = None
    external_item_id: Optional[str] = None
    external_variant_id: Optional[str] = None
    quantity: IntValue = 1
    unit_price: DecimalValue = Decimal("0")
    category: Optional[str] = None

    @property
    def line_revenue(self) -> Decimal:
        return self.unit_price * self.quantity


class Variant(CanonicalBase):
    """Sellable variant of a product. ``unit_cost`` None means unknown."""
    external_variant_id: Optional[str] = None
    sku: Optional[str] = None
    title: Optional[str] = None
    price: DecimalValue = Decimal("0")
    inventory_quantity: IntValue = 0
    unit_cost: Optional[DecimalValue] = None


# =============================================================================
# Top-level Records
# =============================================================================

class Order(StoreScoped):
    """Canonical order, identified by (platform_type, platform_name, external_order_id)."""
    external_order_id: str
    order_number: Optional[str] = None
    total_price: DecimalValue
    currency: Optional[str] = None
    created_at: DateTimeValue
    financial_status: FinancialStatus = FinancialStatus.PENDING
    fulfillment_status: Optional[str] = None
    order_status: Optional[str] = None
    buyer_username: Optional[str] = None
    buyer_email: Optional[str] = None
    shipping_address: Optional[Address] = None
    line_items: List[LineItem] = Field(default_factory=list)
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.platform_type, self.platform_name, self.external_order_id)

    @property
    def customer_key(self) -> str:
        """Grouping key: email, else username, else a per-order guest key."""
        if self.buyer_email:
            return f"{self.buyer_email}-{self.platform_name}"
        if self.buyer_username:
            return f"{self.buyer_username}-{self.platform_name}"
        return f"guest-{self.external_order_id}-{self.platform_name}"


class Product(StoreScoped):
    """Canonical product, identified by (platform_type, platform_name, external_product_id)."""
    external_product_id: str
    title: str = ""
    description: Optional[str] = None
    category: Optional[str] = None
    vendor: Optional[str] = None
    tags: TagList = Field(default_factory=list)
    variants: List[Variant] = Field(default_factory=list)
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.platform_type, self.platform_name, self.external_product_id)


class Customer(StoreScoped):
    """Canonical customer, identified by (platform_type, platform_name, external_customer_id)."""
    external_customer_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    order_count: IntValue = 0
    total_spent: DecimalValue = Decimal("0")
    tags: TagList = Field(default_factory=list)
    addresses: List[Address] = Field(default_factory=list)
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.platform_type, self.platform_name, self.external_customer_id)
