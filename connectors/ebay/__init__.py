"""eBay Adapter Package.

Implements the PlatformAdapter interface for the eBay Trading API.
"""

from connectors.ebay.adapter import EbayAdapter
from connectors.ebay.auth import EbayAuthProvider, EbayAuthConfig, clear_token_cache

__all__ = [
    # Adapter
    "EbayAdapter",
    # Auth
    "EbayAuthProvider",
    "EbayAuthConfig",
    "clear_token_cache",
]
