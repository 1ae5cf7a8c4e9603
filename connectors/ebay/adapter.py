"""eBay Platform Adapter.

Implements the PlatformAdapter interface on top of the eBay Trading API
(GetOrders for orders, GetSellerList for listings).
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from connectors.auth import AuthProvider
from connectors.base import Page, PlatformAdapter, register_adapter
from connectors.ebay.auth import EbayAuthConfig, EbayAuthProvider
from connectors.ebay.trading import (
    TRADING_ENDPOINT,
    as_list,
    build_request,
    describe_errors,
    is_auth_failure,
    leaf_text,
    parse_response,
    trading_headers,
)
from core.errors import AuthError, TransportError
from core.observability import get_logger

logger = get_logger(__name__)

ORDERS_PER_PAGE = 100
ITEMS_PER_PAGE = 200

# GetOrders only reaches this far back
MAX_HISTORY_DAYS = 90
MAX_MOD_TIME_DAYS = 30

LISTING_LOOKBACK_DAYS = 30
LISTING_LOOKAHEAD_DAYS = 90


def _ebay_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.000Z")


@register_adapter("ebay")
class EbayAdapter(PlatformAdapter):
    """eBay adapter implementation.

    Required configuration (credentials):
    - static_token, or
    - app_id + client_secret (+ optional refresh_token)

    The cursor is the next page number. eBay has no customer listing, so
    customers are derived from persisted orders by the orchestrator.
    """

    customers_from_orders = True

    def _build_auth(self) -> AuthProvider:
        return EbayAuthProvider(
            EbayAuthConfig.from_store(self.store),
            timeout_seconds=self.settings.timeout_seconds,
        )

    async def _call(self, call_name: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Execute one Trading API call and return the parsed body.

        Raises:
            AuthError: Token rejected after one refresh
            TransportError: Any other Ack=Failure or transport failure
        """
        refreshed = False
        while True:
            body = build_request(call_name, fields, auth_token=self.auth.static_token)
            response = await self.http.request(
                "POST",
                TRADING_ENDPOINT,
                data=body,
                headers=trading_headers(call_name),
            )
            ack, errors, parsed = parse_response(response.text)

            if ack in ("Success", "Warning"):
                if errors:
                    logger.warning(
                        f"{call_name} returned warnings: {describe_errors(errors)}",
                        extra_fields={"call": call_name},
                    )
                return parsed

            if is_auth_failure(errors):
                if not refreshed and not self.auth.static_token:
                    logger.warning(f"{call_name} rejected the token, refreshing")
                    refreshed = True
                    await self.auth.refresh()
                    continue
                raise AuthError(f"{call_name} failed: {describe_errors(errors)}", response.status, response.text[:500])

            raise TransportError(
                f"{call_name} failed ({ack or 'no Ack'}): {describe_errors(errors)}",
                response.status,
                response.text[:500],
            )

    @staticmethod
    def _page_number(cursor: Optional[str]) -> int:
        return int(cursor) if cursor else 1

    @staticmethod
    def _next_cursor(body: Dict[str, Any], page_number: int, records: List[Any]) -> Optional[str]:
        if not records:
            return None
        pagination = body.get("PaginationResult") or {}
        total_pages = leaf_text(pagination.get("TotalNumberOfPages")) if isinstance(pagination, dict) else None
        has_more = (leaf_text(body.get("HasMoreOrders")) or "").lower() == "true"
        try:
            more_pages = total_pages is not None and page_number < int(total_pages)
        except ValueError:
            more_pages = False
        if more_pages or has_more:
            return str(page_number + 1)
        return None

    # =========================================================================
    # Capability set
    # =========================================================================

    async def fetch_orders_page(self, since: Optional[datetime], cursor: Optional[str]) -> Page:
        now = self._now()
        page_number = self._page_number(cursor)

        fields: Dict[str, Any] = {
            "OrderRole": "Seller",
            "OrderStatus": "All",
            "DetailLevel": "ReturnAll",
            "Pagination": {"EntriesPerPage": ORDERS_PER_PAGE, "PageNumber": page_number},
        }
        if since is not None:
            fields["ModTimeFrom"] = _ebay_time(max(since, now - timedelta(days=MAX_MOD_TIME_DAYS)))
            fields["ModTimeTo"] = _ebay_time(now)
        else:
            days = min(self.settings.initial_sync_days, MAX_HISTORY_DAYS)
            fields["CreateTimeFrom"] = _ebay_time(now - timedelta(days=days))
            fields["CreateTimeTo"] = _ebay_time(now)

        body = await self._call("GetOrders", fields)
        order_array = body.get("OrderArray") or {}
        orders = as_list(order_array.get("Order")) if isinstance(order_array, dict) else []
        return Page(records=orders, next_cursor=self._next_cursor(body, page_number, orders))

    async def fetch_products_page(self, cursor: Optional[str]) -> Page:
        now = self._now()
        page_number = self._page_number(cursor)

        fields = {
            "DetailLevel": "ReturnAll",
            "EndTimeFrom": _ebay_time(now - timedelta(days=LISTING_LOOKBACK_DAYS)),
            "EndTimeTo": _ebay_time(now + timedelta(days=LISTING_LOOKAHEAD_DAYS)),
            "Pagination": {"EntriesPerPage": ITEMS_PER_PAGE, "PageNumber": page_number},
        }
        body = await self._call("GetSellerList", fields)
        item_array = body.get("ItemArray") or {}
        items = as_list(item_array.get("Item")) if isinstance(item_array, dict) else []
        return Page(records=items, next_cursor=self._next_cursor(body, page_number, items))

    async def fetch_customers_page(self, cursor: Optional[str]) -> Page:
        return Page(records=[], next_cursor=None)
