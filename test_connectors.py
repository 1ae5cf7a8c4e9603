"""
Connector Tests

Validates the platform adapter layer without network access:
1. PlatformHttpClient retry / rate-limit / 401-refresh behaviour
2. Shopify cursor pagination and variant cost enrichment
3. eBay Trading API XML handling, pagination and token handling
4. Adapter factory and credential errors

HTTP is faked by patching PlatformHttpClient._send.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

import connectors.ebay.auth as ebay_auth
from connectors import (
    AccessToken,
    AdapterSettings,
    AuthProvider,
    EbayAdapter,
    HttpResponse,
    PlatformHttpClient,
    RetryConfig,
    ShopifyAdapter,
    create_adapter,
    list_available_adapters,
)
from connectors.ebay.auth import EbayAuthConfig, EbayAuthProvider, clear_token_cache
from connectors.ebay.trading import (
    as_list,
    build_request,
    element_to_dict,
    is_auth_failure,
    parse_response,
)
from connectors.shopify.adapter import parse_next_page_info
from core.config import StoreConfig
from core.errors import AdapterError, AuthError, ConfigError, TransportError
from core.observability import get_metrics
from normalization import normalize_batch

import xml.etree.ElementTree as ET


FAST_SETTINGS = AdapterSettings(
    timeout_seconds=5,
    retry_config=RetryConfig(max_retries=2, base_delay=0),
    page_delay_seconds=0,
    initial_sync_days=60,
)

SHOPIFY_STORE = StoreConfig(
    platform_type="shopify",
    platform_name="Acme",
    credentials={"access_token": "shpat_test"},
    options={"shop_domain": "acme.myshopify.com"},
)
EBAY_STATIC_STORE = StoreConfig(platform_type="ebay", platform_name="eBay", credentials={"static_token": "AgAAAA-static"})
EBAY_OAUTH_STORE = StoreConfig(
    platform_type="ebay",
    platform_name="eBay",
    credentials={"app_id": "app-1", "client_secret": "secret"},
)


def response(status: int = 200, text: str = "", headers: Dict[str, str] = None) -> HttpResponse:
    return HttpResponse(status=status, text=text, headers=headers or {})


class CountingAuth(AuthProvider):
    """Bearer token that changes on every refresh."""

    def __init__(self):
        self.version = 1
        self.refreshes = 0

    async def ensure_valid_token(self) -> None:
        return None

    async def refresh(self) -> None:
        self.refreshes += 1
        self.version += 1

    def get_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer token-{self.version}"}


async def _request(client: PlatformHttpClient, method: str = "GET", url: str = "https://api.test/x"):
    await client.open()
    try:
        return await client.request(method, url)
    finally:
        await client.close()


class TestPlatformHttpClient:
    """Retry and error classification."""

    def _client(self, auth=None, max_retries=2):
        return PlatformHttpClient(auth or CountingAuth(), RetryConfig(max_retries=max_retries, base_delay=0))

    def test_retries_transient_status(self):
        client = self._client()
        before = get_metrics().get_summary()["records"]["http_retries"]
        send = AsyncMock(side_effect=[response(503), response(200, "{}")])

        with patch.object(PlatformHttpClient, "_send", send):
            result = asyncio.run(_request(client))

        assert result.status == 200
        assert send.call_count == 2
        assert get_metrics().get_summary()["records"]["http_retries"] == before + 1

    def test_retries_exhausted(self):
        client = self._client(max_retries=2)
        send = AsyncMock(return_value=response(502, "bad gateway"))

        with patch.object(PlatformHttpClient, "_send", send):
            with pytest.raises(TransportError) as exc_info:
                asyncio.run(_request(client))

        assert send.call_count == 3
        assert exc_info.value.status_code == 502
        assert exc_info.value.transient

    def test_connection_errors_are_retried(self):
        client = self._client()
        send = AsyncMock(side_effect=[aiohttp.ClientConnectionError("reset"), asyncio.TimeoutError(), response(200)])

        with patch.object(PlatformHttpClient, "_send", send):
            result = asyncio.run(_request(client))

        assert result.status == 200
        assert send.call_count == 3

    def test_rate_limit_honours_retry_after(self):
        client = self._client()
        send = AsyncMock(side_effect=[response(429, headers={"retry-after": "2"}), response(200)])
        sleep = AsyncMock()

        with patch.object(PlatformHttpClient, "_send", send), patch("connectors.http.asyncio.sleep", sleep):
            asyncio.run(_request(client))

        sleep.assert_any_await(2.0)

    def test_rate_limit_exhausted(self):
        client = self._client(max_retries=1)
        send = AsyncMock(return_value=response(429, "slow down"))

        with patch.object(PlatformHttpClient, "_send", send), patch("connectors.http.asyncio.sleep", AsyncMock()):
            with pytest.raises(TransportError) as exc_info:
                asyncio.run(_request(client))

        assert exc_info.value.status_code == 429
        assert send.call_count == 2

    def test_401_refreshes_once(self):
        auth = CountingAuth()
        client = self._client(auth)
        send = AsyncMock(side_effect=[response(401), response(200)])

        with patch.object(PlatformHttpClient, "_send", send):
            asyncio.run(_request(client))

        assert auth.refreshes == 1
        retried_headers = send.call_args_list[1][0][2]
        assert retried_headers["Authorization"] == "Bearer token-2"

    def test_second_401_is_auth_error(self):
        auth = CountingAuth()
        client = self._client(auth)
        send = AsyncMock(return_value=response(401, "invalid token"))

        with patch.object(PlatformHttpClient, "_send", send):
            with pytest.raises(AuthError):
                asyncio.run(_request(client))

        assert auth.refreshes == 1
        assert send.call_count == 2

    def test_client_error_is_not_retried(self):
        client = self._client()
        send = AsyncMock(return_value=response(404, "not found"))

        with patch.object(PlatformHttpClient, "_send", send):
            with pytest.raises(TransportError) as exc_info:
                asyncio.run(_request(client))

        assert send.call_count == 1
        assert not exc_info.value.transient

    def test_request_requires_open(self):
        client = self._client()
        with pytest.raises(TransportError):
            asyncio.run(client.request("GET", "https://api.test/x"))

    def test_malformed_json(self):
        with pytest.raises(TransportError):
            response(200, "<html>").json()


class TestShopifyAdapter:
    """Link-header pagination and cost enrichment."""

    def test_parse_next_page_info(self):
        link = (
            '<https://acme.myshopify.com/admin/api/2024-07/orders.json?limit=250&page_info=abc>; rel="previous", '
            '<https://acme.myshopify.com/admin/api/2024-07/orders.json?limit=250&page_info=def>; rel="next"'
        )
        assert parse_next_page_info(link) == "def"
        assert parse_next_page_info('<https://x/orders.json?page_info=abc>; rel="previous"') is None
        assert parse_next_page_info(None) is None

    def test_orders_follow_cursor(self):
        adapter = ShopifyAdapter(SHOPIFY_STORE, FAST_SETTINGS)
        send = AsyncMock(side_effect=[
            response(200, '{"orders": [{"id": 1}, {"id": 2}]}', {
                "link": '<https://acme.myshopify.com/admin/api/2024-07/orders.json?limit=250&page_info=p2>; rel="next"',
            }),
            response(200, '{"orders": [{"id": 3}]}'),
        ])
        since = datetime(2024, 3, 1, tzinfo=timezone.utc)

        async def collect():
            async with adapter:
                return [page async for page in adapter.list_orders(since)]

        with patch.object(PlatformHttpClient, "_send", send):
            pages = asyncio.run(collect())

        assert [[r["id"] for r in page] for page in pages] == [[1, 2], [3]]

        first_headers, first_params = send.call_args_list[0][0][2], send.call_args_list[0][0][3]
        assert first_headers["X-Shopify-Access-Token"] == "shpat_test"
        assert first_params == {"status": "any", "limit": 250, "updated_at_min": "2024-03-01T00:00:00Z"}
        # follow-up requests carry only limit and page_info
        assert send.call_args_list[1][0][3] == {"limit": 250, "page_info": "p2"}

    def test_products_get_variant_costs(self):
        adapter = ShopifyAdapter(SHOPIFY_STORE, FAST_SETTINGS)
        products = (
            '{"products": [{"id": 9, "variants": ['
            '{"id": 91, "inventory_item_id": 701}, {"id": 92, "inventory_item_id": 702}]}]}'
        )

        async def send(method, url, headers, params=None, data=None):
            if url.endswith("/products.json"):
                return response(200, products)
            if url.endswith("/inventory_items/701.json"):
                return response(200, '{"inventory_item": {"cost": "4.50"}}')
            return response(404, "not found")

        async def fetch():
            async with adapter:
                return await adapter.fetch_products_page(None)

        with patch.object(PlatformHttpClient, "_send", AsyncMock(side_effect=send)):
            page = asyncio.run(fetch())

        variants = page.records[0]["variants"]
        assert variants[0]["cost"] == "4.50"
        assert variants[1]["cost"] is None
        assert page.next_cursor is None

    def test_malformed_products_pass_through_cost_enrichment(self):
        adapter = ShopifyAdapter(SHOPIFY_STORE, FAST_SETTINGS)
        products = (
            '{"products": [{"id": 9, "title": "Frame", "variants": [{"id": 91, "inventory_item_id": 701}]},'
            ' "garbage",'
            ' {"id": 10, "title": "Odd", "variants": ["junk", {"id": 101, "inventory_item_id": 702}]},'
            ' {"id": 11, "title": "Flat", "variants": "none"}]}'
        )

        async def send(method, url, headers, params=None, data=None):
            if url.endswith("/products.json"):
                return response(200, products)
            return response(200, '{"inventory_item": {"cost": "4.50"}}')

        async def collect():
            async with adapter:
                return [page async for page in adapter.list_products()]

        with patch.object(PlatformHttpClient, "_send", AsyncMock(side_effect=send)):
            pages = asyncio.run(collect())

        records = pages[0]
        assert len(records) == 4
        assert records[0]["variants"][0]["cost"] == "4.50"
        assert records[2]["variants"][1]["cost"] == "4.50"

        result = normalize_batch("products", records, SHOPIFY_STORE)
        assert [p.external_product_id for p in result.records] == ["9"]
        assert result.skipped == 3

    def test_malformed_payload_is_adapter_error(self):
        adapter = ShopifyAdapter(SHOPIFY_STORE, FAST_SETTINGS)

        async def collect():
            async with adapter:
                return [page async for page in adapter.list_customers()]

        with patch.object(PlatformHttpClient, "_send", AsyncMock(return_value=response(200, '{"errors": "x"}'))):
            with pytest.raises(AdapterError) as exc_info:
                asyncio.run(collect())

        assert exc_info.value.phase == "customers"
        assert not exc_info.value.is_auth_failure

    def test_missing_credentials(self):
        with pytest.raises(ConfigError):
            create_adapter(StoreConfig(platform_type="shopify", platform_name="NoToken", options={"shop_domain": "x"}))
        with pytest.raises(ConfigError):
            create_adapter(StoreConfig(platform_type="shopify", platform_name="NoDomain", credentials={"access_token": "t"}))


GET_ORDERS_PAGE = """<?xml version="1.0" encoding="UTF-8"?>
<GetOrdersResponse xmlns="urn:ebay:apis:eBLBaseComponents">
  <Ack>Success</Ack>
  <PaginationResult><TotalNumberOfPages>2</TotalNumberOfPages></PaginationResult>
  <OrderArray>{orders}</OrderArray>
</GetOrdersResponse>"""

AUTH_FAILURE = """<?xml version="1.0" encoding="UTF-8"?>
<GetOrdersResponse xmlns="urn:ebay:apis:eBLBaseComponents">
  <Ack>Failure</Ack>
  <Errors><ShortMessage>Auth token is invalid.</ShortMessage><ErrorCode>931</ErrorCode></Errors>
</GetOrdersResponse>"""


def orders_page(*order_ids: str) -> str:
    return GET_ORDERS_PAGE.format(orders="".join(f"<Order><OrderID>{i}</OrderID></Order>" for i in order_ids))


class TestEbayTrading:
    """XML helpers."""

    def test_build_request(self):
        body = build_request(
            "GetOrders",
            {"OrderRole": "Seller", "Pagination": {"EntriesPerPage": 100, "PageNumber": 2}},
            auth_token="tok",
        )
        assert body.startswith(b'<?xml version="1.0" encoding="utf-8"?>')
        root = ET.fromstring(body)
        ns = "{urn:ebay:apis:eBLBaseComponents}"
        assert root.tag == f"{ns}GetOrdersRequest"
        assert root.find(f"{ns}RequesterCredentials/{ns}eBayAuthToken").text == "tok"
        assert root.find(f"{ns}Pagination/{ns}PageNumber").text == "2"

    def test_element_to_dict(self):
        parsed = element_to_dict(ET.fromstring(
            '<A><B currencyID="USD">1.50</B><C>x</C><C>y</C><D><E>1</E></D></A>'
        ))
        assert parsed == {"B": {"value": "1.50", "@currencyID": "USD"}, "C": ["x", "y"], "D": {"E": "1"}}
        assert as_list(parsed["D"]) == [{"E": "1"}]
        assert as_list(None) == []

    def test_parse_failure(self):
        ack, errors, _ = parse_response(AUTH_FAILURE)
        assert ack == "Failure"
        assert is_auth_failure(errors)

    def test_malformed_xml(self):
        with pytest.raises(TransportError):
            parse_response("<GetOrdersResponse>")


class TestEbayAdapter:
    """Paging and authentication of the Trading API adapter."""

    def setup_method(self):
        clear_token_cache()

    def test_orders_paginate_by_page_number(self):
        adapter = EbayAdapter(EBAY_STATIC_STORE, FAST_SETTINGS)
        send = AsyncMock(side_effect=[response(200, orders_page("1", "2")), response(200, orders_page("3"))])

        async def collect():
            async with adapter:
                return [page async for page in adapter.list_orders(None)]

        with patch.object(PlatformHttpClient, "_send", send):
            pages = asyncio.run(collect())

        assert [[o["OrderID"] for o in page] for page in pages] == [["1", "2"], ["3"]]

        first_body = send.call_args_list[0][0][4]
        assert b"<eBayAuthToken>AgAAAA-static</eBayAuthToken>" in first_body
        assert b"<CreateTimeFrom>" in first_body
        assert b"<PageNumber>2</PageNumber>" in send.call_args_list[1][0][4]
        assert send.call_args_list[0][0][2]["X-EBAY-API-CALL-NAME"] == "GetOrders"

    def test_incremental_window_is_clamped(self):
        adapter = EbayAdapter(EBAY_STATIC_STORE, FAST_SETTINGS)
        now = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)
        adapter._now = lambda: now
        send = AsyncMock(return_value=response(200, orders_page()))

        async def fetch():
            async with adapter:
                return await adapter.fetch_orders_page(now - timedelta(days=60), None)

        with patch.object(PlatformHttpClient, "_send", send):
            page = asyncio.run(fetch())

        body = send.call_args[0][4]
        assert b"<ModTimeFrom>2024-05-31T12:00:00.000Z</ModTimeFrom>" in body
        assert page.records == []
        assert page.next_cursor is None

    def test_static_token_rejection_is_auth_failure(self):
        adapter = EbayAdapter(EBAY_STATIC_STORE, FAST_SETTINGS)

        async def collect():
            async with adapter:
                return [page async for page in adapter.list_orders(None)]

        with patch.object(PlatformHttpClient, "_send", AsyncMock(return_value=response(200, AUTH_FAILURE))):
            with pytest.raises(AdapterError) as exc_info:
                asyncio.run(collect())

        assert exc_info.value.is_auth_failure

    def test_oauth_token_refreshed_after_rejection(self):
        fetched = []

        async def fake_fetch(self):
            token = AccessToken(access_token=f"oauth-{len(fetched) + 1}")
            fetched.append(token)
            ebay_auth._token_cache[self.config.cache_key] = token
            return token

        adapter = EbayAdapter(EBAY_OAUTH_STORE, FAST_SETTINGS)
        send = AsyncMock(side_effect=[response(200, AUTH_FAILURE), response(200, orders_page("1"))])

        async def fetch():
            async with adapter:
                await adapter.authenticate()
                return await adapter.fetch_orders_page(None, None)

        with patch.object(EbayAuthProvider, "_fetch_token", fake_fetch), patch.object(PlatformHttpClient, "_send", send):
            page = asyncio.run(fetch())

        assert len(fetched) == 2
        assert [o["OrderID"] for o in page.records] == ["1"]
        assert send.call_args_list[1][0][2]["X-EBAY-API-IAF-TOKEN"] == "oauth-2"
        # OAuth mode sends no RequesterCredentials
        assert b"RequesterCredentials" not in send.call_args_list[0][0][4]

    def test_customers_come_from_orders(self):
        adapter = EbayAdapter(EBAY_STATIC_STORE, FAST_SETTINGS)
        assert adapter.customers_from_orders
        page = asyncio.run(adapter.fetch_customers_page(None))
        assert page.records == []


class TestEbayAuth:
    """Token cache and credential validation."""

    def setup_method(self):
        clear_token_cache()

    def test_token_cache_shared_per_app(self):
        calls = []

        async def fake_fetch(self):
            calls.append(self.config.cache_key)
            token = AccessToken(access_token="shared")
            ebay_auth._token_cache[self.config.cache_key] = token
            return token

        config = EbayAuthConfig(app_id="app-1", client_secret="secret")

        async def authenticate_twice():
            await EbayAuthProvider(config).ensure_valid_token()
            await EbayAuthProvider(config).ensure_valid_token()

        with patch.object(EbayAuthProvider, "_fetch_token", fake_fetch):
            asyncio.run(authenticate_twice())

        assert calls == ["app-1:client_credentials"]

    def test_expired_token_is_refetched(self):
        config = EbayAuthConfig(app_id="app-1", client_secret="secret", refresh_token="r")
        ebay_auth._token_cache[config.cache_key] = AccessToken(
            access_token="old",
            expires_in=600,
            obtained_at=datetime.now(timezone.utc) - timedelta(minutes=9),
        )
        provider = EbayAuthProvider(config)
        assert provider.get_token() is None
        assert config.grant_type == "refresh_token"

    def test_static_mode_has_no_headers(self):
        provider = EbayAuthProvider(EbayAuthConfig(static_token="tok"))
        asyncio.run(provider.ensure_valid_token())
        assert provider.get_headers() == {}

    def test_missing_credentials(self):
        with pytest.raises(ConfigError):
            EbayAuthConfig.from_store(StoreConfig(platform_type="ebay", platform_name="eBay", credentials={"app_id": "a"}))


class TestAdapterFactory:

    def test_registered_adapters(self):
        assert {"shopify", "ebay"} <= set(list_available_adapters())
        assert isinstance(create_adapter(SHOPIFY_STORE), ShopifyAdapter)
        assert isinstance(create_adapter(EBAY_STATIC_STORE), EbayAdapter)

    def test_unknown_platform(self):
        with pytest.raises(ConfigError):
            create_adapter(StoreConfig(platform_type="etsy", platform_name="Etsy"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
