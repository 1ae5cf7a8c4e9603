"""Platform Connectors - Pluggable selling-platform integrations.

This package contains the abstract adapter interface and concrete
implementations for specific selling platforms (Shopify, eBay).

Adapters are platform-specific only at the edges. This package handles:
- Platform authentication (static tokens, OAuth token exchange)
- Cursor pagination
- Retries, rate limits and error classification

Key Design Principle:
- The sync orchestrator depends ONLY on the PlatformAdapter interface
- Adapters return RAW records; canonical mapping lives in /normalization/

To add a new platform:
1. Create a new folder (e.g., etsy/)
2. Implement PlatformAdapter interface
3. Register using @register_adapter decorator
"""

from connectors.base import (
    # Core interface
    PlatformAdapter,
    AdapterSettings,
    Page,
    RawRecord,

    # Factory functions
    create_adapter,
    register_adapter,
    list_available_adapters,
)
from connectors.auth import AccessToken, AuthProvider, StaticTokenAuth
from connectors.http import HttpResponse, PlatformHttpClient, RetryConfig

# Importing the platform packages registers their adapters
from connectors.shopify import ShopifyAdapter
from connectors.ebay import EbayAdapter

__all__ = [
    # Core interface
    "PlatformAdapter",
    "AdapterSettings",
    "Page",
    "RawRecord",

    # Auth / HTTP
    "AccessToken",
    "AuthProvider",
    "StaticTokenAuth",
    "HttpResponse",
    "PlatformHttpClient",
    "RetryConfig",

    # Platforms
    "ShopifyAdapter",
    "EbayAdapter",

    # Factory
    "create_adapter",
    "register_adapter",
    "list_available_adapters",
]
