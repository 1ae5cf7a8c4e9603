"""Core module - platform-neutral models, configuration, errors and observability.

This module is intentionally platform-agnostic.

Platform-specific logic (Shopify, eBay, etc.) belongs in /connectors/ and
/normalization/.
"""

__version__ = "1.0.0"
