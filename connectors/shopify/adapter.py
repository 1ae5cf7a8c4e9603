"""Shopify Platform Adapter.

Implements the PlatformAdapter interface for the Shopify Admin REST API.
"""

import asyncio
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from connectors.auth import AuthProvider, StaticTokenAuth
from connectors.base import Page, PlatformAdapter, RawRecord, register_adapter
from core.errors import AuthError, ConfigError, TransportError
from core.models import to_storage_timestamp
from core.observability import get_logger

logger = get_logger(__name__)

API_VERSION = "2024-07"
PAGE_SIZE = 250
COST_BATCH_SIZE = 10
COST_BATCH_DELAY = 0.2  # seconds

_NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')


def parse_next_page_info(link_header: Optional[str]) -> Optional[str]:
    """Extract the page_info cursor of the rel="next" link, if any."""
    if not link_header:
        return None
    match = _NEXT_LINK.search(link_header)
    if not match:
        return None
    values = parse_qs(urlparse(match.group(1)).query).get("page_info")
    return values[0] if values else None


def _raw_variants(product: Any) -> List[RawRecord]:
    """Object variants of a raw product; malformed entries are left for normalization to reject."""
    if not isinstance(product, dict):
        return []
    variants = product.get("variants")
    if not isinstance(variants, list):
        return []
    return [variant for variant in variants if isinstance(variant, dict)]


@register_adapter("shopify")
class ShopifyAdapter(PlatformAdapter):
    """Shopify adapter implementation.

    Required configuration:
    - options.shop_domain: "<shop>.myshopify.com"
    - credentials.access_token: Admin API access token

    Pagination follows the cursor in the Link header; a follow-up request
    may carry only ``limit`` and ``page_info``.
    """

    def __init__(self, store, settings=None):
        self.shop_domain = store.options.get("shop_domain", "")
        if not self.shop_domain:
            raise ConfigError(f"{store.label}: missing shop domain")
        super().__init__(store, settings)

    def _build_auth(self) -> AuthProvider:
        return StaticTokenAuth(
            self.store.credentials.get("access_token", ""),
            header_name="X-Shopify-Access-Token",
            prefix="",
        )

    def _url(self, resource: str) -> str:
        return f"https://{self.shop_domain}/admin/api/{API_VERSION}/{resource}.json"

    async def _get_page(
        self,
        resource: str,
        params: Dict[str, Any],
        cursor: Optional[str],
    ) -> Page:
        if cursor:
            params = {"limit": PAGE_SIZE, "page_info": cursor}

        response = await self.http.request(
            "GET",
            self._url(resource),
            params=params,
            headers={"Accept": "application/json"},
        )
        payload = response.json()
        records = payload.get(resource) if isinstance(payload, dict) else None
        if not isinstance(records, list):
            raise TransportError(
                f"Malformed {resource} payload: missing '{resource}' list",
                response.status,
                response.text[:500],
            )

        return Page(records=records, next_cursor=parse_next_page_info(response.headers.get("link")))

    # =========================================================================
    # Capability set
    # =========================================================================

    async def fetch_orders_page(self, since: Optional[datetime], cursor: Optional[str]) -> Page:
        params: Dict[str, Any] = {"status": "any", "limit": PAGE_SIZE}
        if since is not None:
            params["updated_at_min"] = to_storage_timestamp(since)
        return await self._get_page("orders", params, cursor)

    async def fetch_products_page(self, cursor: Optional[str]) -> Page:
        page = await self._get_page("products", {"limit": PAGE_SIZE}, cursor)
        await self._attach_variant_costs(page.records)
        return page

    async def fetch_customers_page(self, cursor: Optional[str]) -> Page:
        return await self._get_page("customers", {"limit": PAGE_SIZE}, cursor)

    # =========================================================================
    # Unit cost enrichment
    # =========================================================================

    async def _attach_variant_costs(self, products: List[RawRecord]) -> None:
        """Set ``cost`` on each raw variant from its inventory item.

        Variants whose cost cannot be read keep ``cost`` = None.
        """
        inventory_ids: List[str] = []
        for product in products:
            for variant in _raw_variants(product):
                item_id = variant.get("inventory_item_id")
                if item_id is not None and str(item_id) not in inventory_ids:
                    inventory_ids.append(str(item_id))

        costs: Dict[str, Optional[str]] = {}
        for i in range(0, len(inventory_ids), COST_BATCH_SIZE):
            batch = inventory_ids[i:i + COST_BATCH_SIZE]
            results = await asyncio.gather(*(self._fetch_inventory_cost(item_id) for item_id in batch))
            costs.update(zip(batch, results))

            if i + COST_BATCH_SIZE < len(inventory_ids):
                await asyncio.sleep(COST_BATCH_DELAY)

        for product in products:
            for variant in _raw_variants(product):
                item_id = variant.get("inventory_item_id")
                variant["cost"] = costs.get(str(item_id)) if item_id is not None else None

    async def _fetch_inventory_cost(self, inventory_item_id: str) -> Optional[str]:
        try:
            response = await self.http.request("GET", self._url(f"inventory_items/{inventory_item_id}"))
            payload = response.json()
        except AuthError:
            raise
        except TransportError as e:
            logger.warning(
                f"Could not read cost of inventory item {inventory_item_id}: {e}",
                extra_fields={"inventory_item_id": inventory_item_id},
            )
            return None

        item = payload.get("inventory_item") if isinstance(payload, dict) else None
        cost = item.get("cost") if isinstance(item, dict) else None
        return str(cost) if cost not in (None, "") else None
