"""Core data models - platform-neutral canonical types.

This package contains all canonical commerce records that are intentionally
independent of any specific selling platform.
"""

from core.models.canonical import (
    # Base
    CanonicalBase,
    StoreScoped,
    DecimalValue,
    IntValue,
    DateTimeValue,
    TagList,
    to_storage_timestamp,
    
    # Enums
    PlatformType,
    FinancialStatus,
    OUTSTANDING_STATUSES,
    
    # Nested records
    Address,
    LineItem,
    Variant,
    
    # Top-level records
    Order,
    Product,
    Customer,
)

__all__ = [
    # Base
    "CanonicalBase",
    "StoreScoped",
    "DecimalValue",
    "IntValue",
    "DateTimeValue",
    "TagList",
    "to_storage_timestamp",
    
    # Enums
    "PlatformType",
    "FinancialStatus",
    "OUTSTANDING_STATUSES",
    
    # Nested records
    "Address",
    "LineItem",
    "Variant",
    
    # Top-level records
    "Order",
    "Product",
    "Customer",
]
