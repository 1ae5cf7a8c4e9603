"""Shopify Adapter Package.

Implements the PlatformAdapter interface for the Shopify Admin REST API.
"""

from connectors.shopify.adapter import ShopifyAdapter, parse_next_page_info

__all__ = [
    "ShopifyAdapter",
    "parse_next_page_info",
]
