"""Normalization - raw platform records to canonical records.

Importing this package registers the Shopify and eBay normalizers.
"""

from normalization.base import (
    NormalizationResult,
    normalize_batch,
    register_normalizer,
    get_normalizer,
)
from normalization import shopify, ebay

__all__ = [
    "NormalizationResult",
    "normalize_batch",
    "register_normalizer",
    "get_normalizer",
    "shopify",
    "ebay",
]
