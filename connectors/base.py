"""Abstract Platform Adapter Interface.

This module defines the capability set every selling-platform adapter must
implement. It is intentionally platform-agnostic - no Shopify or eBay
specifics here.

Adapters implement this interface to:
1. Authenticate with their platform (static token or token exchange)
2. Fetch raw orders, products and customers one cursor page at a time

Key Design Principles:
- The orchestrator depends ONLY on this interface
- Adapters return RAW platform records; mapping to canonical records is the
  job of /normalization/
- Adding a platform means adding one implementer and registering it
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from connectors.auth import AuthProvider
from connectors.http import PlatformHttpClient, RetryConfig
from core.config import Settings, StoreConfig
from core.errors import AdapterError, ConfigError, TransportError
from core.observability import get_logger

logger = get_logger(__name__)

RawRecord = Dict[str, Any]


@dataclass
class Page:
    """One page of raw records and the cursor of the next page (None = last)."""
    records: List[RawRecord] = field(default_factory=list)
    next_cursor: Optional[str] = None


@dataclass
class AdapterSettings:
    """Tunables shared by every adapter instance."""
    timeout_seconds: int = 30
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    page_delay_seconds: float = 0.5
    initial_sync_days: int = 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdapterSettings":
        return cls(
            timeout_seconds=settings.http_timeout_seconds,
            retry_config=RetryConfig(max_retries=settings.max_retries),
            initial_sync_days=settings.initial_sync_days,
        )


class PlatformAdapter(ABC):
    """Abstract base class for selling-platform adapters.

    Each concrete adapter must:
    1. Build its AuthProvider in __init__ (raising ConfigError for missing credentials)
    2. Implement the three fetch_*_page methods
    3. Register itself using @register_adapter("<platform_type>")

    Usage:
        async with create_adapter(store) as adapter:
            await adapter.authenticate()
            async for page in adapter.list_orders(since=None):
                ...
    """

    platform_type: str = ""

    # True when the platform has no customer listing and customers are
    # derived from the store's persisted orders instead.
    customers_from_orders: bool = False

    def __init__(self, store: StoreConfig, settings: Optional[AdapterSettings] = None):
        self.store = store
        self.settings = settings or AdapterSettings()
        self.auth = self._build_auth()
        self.http = PlatformHttpClient(
            self.auth,
            retry_config=self.settings.retry_config,
            timeout_seconds=self.settings.timeout_seconds,
        )

    async def __aenter__(self) -> "PlatformAdapter":
        await self.http.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.http.close()

    @property
    def label(self) -> str:
        return self.store.label

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # =========================================================================
    # Capability set
    # =========================================================================

    @abstractmethod
    def _build_auth(self) -> AuthProvider:
        """Create the auth provider from the store credentials.

        Raises:
            ConfigError: Credentials are missing or invalid
        """
        pass

    async def authenticate(self) -> None:
        """Make sure the adapter holds a usable token.

        Raises:
            AdapterError: phase "auth"
        """
        try:
            await self.auth.ensure_valid_token()
        except (TransportError, ConfigError) as e:
            raise AdapterError(self.label, "auth", e) from e

    @abstractmethod
    async def fetch_orders_page(self, since: Optional[datetime], cursor: Optional[str]) -> Page:
        """Fetch one page of raw orders.

        Args:
            since: Only records changed at/after this instant (None = full history)
            cursor: Opaque cursor from the previous page (None = first page)
        """
        pass

    @abstractmethod
    async def fetch_products_page(self, cursor: Optional[str]) -> Page:
        """Fetch one page of raw products."""
        pass

    @abstractmethod
    async def fetch_customers_page(self, cursor: Optional[str]) -> Page:
        """Fetch one page of raw customers."""
        pass

    # =========================================================================
    # Lazy page sequences
    # =========================================================================

    def list_orders(self, since: Optional[datetime] = None) -> AsyncIterator[List[RawRecord]]:
        return self._paginate("orders", lambda cursor: self.fetch_orders_page(since, cursor))

    def list_products(self) -> AsyncIterator[List[RawRecord]]:
        return self._paginate("products", self.fetch_products_page)

    def list_customers(self) -> AsyncIterator[List[RawRecord]]:
        return self._paginate("customers", self.fetch_customers_page)

    async def _paginate(
        self,
        phase: str,
        fetch: Callable[[Optional[str]], Awaitable[Page]],
    ) -> AsyncIterator[List[RawRecord]]:
        """Yield record pages until the platform reports no next cursor.

        Raises:
            AdapterError: A page fetch failed; pages already yielded stay valid
        """
        cursor: Optional[str] = None
        page_number = 0

        while True:
            try:
                page = await fetch(cursor)
            except (TransportError, ConfigError) as e:
                raise AdapterError(self.label, phase, e) from e

            page_number += 1
            logger.debug(
                f"{self.label} {phase} page {page_number}: {len(page.records)} records",
                extra_fields={"page": page_number, "records": len(page.records)},
            )
            yield page.records

            if not page.next_cursor:
                return
            cursor = page.next_cursor

            if self.settings.page_delay_seconds:
                await asyncio.sleep(self.settings.page_delay_seconds)


# =============================================================================
# Adapter Factory
# =============================================================================

_adapter_registry: Dict[str, type] = {}


def register_adapter(platform_type: str):
    """Decorator to register an adapter implementation."""
    def decorator(cls):
        cls.platform_type = platform_type
        _adapter_registry[platform_type] = cls
        return cls
    return decorator


def create_adapter(store: StoreConfig, settings: Optional[AdapterSettings] = None) -> PlatformAdapter:
    """Create an adapter instance for a store.

    Args:
        store: StoreConfig with platform_type specified
        settings: Shared adapter tunables

    Returns:
        Configured adapter instance (not yet opened)

    Raises:
        ConfigError: If platform_type is not registered or credentials are missing
    """
    platform_type = store.platform_type.lower()

    if platform_type not in _adapter_registry:
        available = list(_adapter_registry.keys())
        raise ConfigError(
            f"Unknown platform type: {platform_type}. "
            f"Available: {available}"
        )

    adapter_class = _adapter_registry[platform_type]
    return adapter_class(store, settings)


def list_available_adapters() -> List[str]:
    """List all registered adapter types."""
    return list(_adapter_registry.keys())
