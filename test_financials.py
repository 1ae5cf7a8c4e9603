"""
Financial Aggregation Tests

Validates the read-side computations over persisted orders and products:
1. Cost hierarchy (variant cost, category rate, default rate) and SKU tie-break
2. Outstanding invoice grouping (email, username, per-order guest)
3. Gross margin and profit-margin zero guards
4. Seven-day gap-filled daily series
5. Inventory valuation, profit report pagination, stats and revenue buckets
6. Malformed rows excluded, storage outage surfaced
"""

import os
import sqlite3
import tempfile
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.errors import StorageUnavailableError
from core.models import LineItem, Order, Product, Variant
from financials import (
    AggregationFilter,
    CostResolver,
    CostSource,
    FinancialAggregationEngine,
)
from financials.models import percent
from storage import Upserter, init_db

NOW = datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
STORE_KEY = ("shopify", "Acme")


@pytest.fixture
def temp_db():
    """Create a temporary initialized database for testing."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    init_db(db_path)
    yield db_path

    try:
        os.unlink(db_path)
    except PermissionError:
        pass


def order(order_id, total, created_at=None, status="paid", store="Acme", platform="shopify", lines=None, **fields):
    return Order(
        platform_type=platform,
        platform_name=store,
        external_order_id=str(order_id),
        order_number=str(order_id),
        total_price=total,
        created_at=created_at or NOW - timedelta(days=1),
        financial_status=status,
        line_items=lines or [],
        **fields
    )


def product(product_id, variants, category=None, store="Acme", platform="shopify"):
    return Product(
        platform_type=platform,
        platform_name=store,
        external_product_id=str(product_id),
        title=f"Product {product_id}",
        category=category,
        variants=variants,
    )


def engine_with(temp_db, orders=(), products=()) -> FinancialAggregationEngine:
    upserter = Upserter(temp_db)
    upserter.upsert_orders(list(orders))
    upserter.upsert_products(list(products))
    return FinancialAggregationEngine(temp_db, clock=lambda: NOW)


class TestCostResolver:
    """Unit cost hierarchy."""

    def test_variant_cost_by_sku(self):
        resolver = CostResolver([product(1, [Variant(sku="FR-1", price="20.00", unit_cost="10.00")])])
        line = LineItem(title="Frame", sku="FR-1", quantity=2, unit_price="20.00")

        resolved = resolver.resolve(STORE_KEY, line)
        assert resolved.source == CostSource.VARIANT_COST
        assert resolved.unit_cost == Decimal("10.00")
        assert resolver.line_profit(STORE_KEY, line) == Decimal("20.00")

    def test_category_rate_without_match(self):
        resolver = CostResolver([])
        line = LineItem(title="Aviator", sku="AV-1", quantity=1, unit_price="20.00", category="Sunglasses")

        resolved = resolver.resolve(STORE_KEY, line)
        assert resolved.source == CostSource.CATEGORY_RATE
        assert resolved.unit_cost == Decimal("11.00")
        assert resolver.line_profit(STORE_KEY, line) == Decimal("9.00")

    def test_matched_product_category_when_cost_unknown(self):
        resolver = CostResolver([product(1, [Variant(sku="GL-1", price="40.00")], category="Eyeglasses")])
        line = LineItem(title="Glasses", sku="GL-1", quantity=1, unit_price="40.00")

        assert resolver.resolve(STORE_KEY, line).unit_cost == Decimal("20.00")

    def test_default_rate(self):
        resolver = CostResolver([product(1, [Variant(sku="X", price="10.00")], category="Gadgets")])
        line = LineItem(title="Thing", sku="X", quantity=3, unit_price="10.00")

        resolved = resolver.resolve(STORE_KEY, line)
        assert resolved.source == CostSource.DEFAULT_RATE
        assert resolver.line_cost(STORE_KEY, line) == Decimal("18.00")

    def test_match_by_item_id_and_variant_id(self):
        resolver = CostResolver([product(7, [
            Variant(external_variant_id="71", sku="A", unit_cost="1.00"),
            Variant(external_variant_id="72", sku="B", unit_cost="2.00"),
        ])])
        line = LineItem(external_item_id="7", external_variant_id="72", unit_price="5.00")

        resolved = resolver.resolve(STORE_KEY, line)
        assert resolved.unit_cost == Decimal("2.00")
        assert resolved.product_id == "7"

    def test_duplicate_sku_prefers_lowest_numeric_product_id(self):
        resolver = CostResolver([
            product(10, [Variant(sku="DUP", unit_cost="3.00")]),
            product(9, [Variant(sku="DUP", unit_cost="4.00")]),
            product(100, [Variant(sku="DUP", unit_cost="5.00")]),
        ])
        line = LineItem(sku="DUP", unit_price="10.00")

        resolved = resolver.resolve(STORE_KEY, line)
        assert resolved.product_id == "9"
        assert resolved.unit_cost == Decimal("4.00")

    def test_match_is_store_scoped(self):
        resolver = CostResolver([product(1, [Variant(sku="FR-1", unit_cost="10.00")], store="Other")])
        line = LineItem(sku="FR-1", unit_price="20.00")

        assert resolver.resolve(STORE_KEY, line).source == CostSource.DEFAULT_RATE

    def test_order_without_lines_uses_flat_rate(self):
        resolver = CostResolver([])
        assert resolver.order_cost(order(1, "50.00")) == Decimal("30.00")

    def test_percent_zero_guard(self):
        assert percent(Decimal("5"), Decimal("0")) == Decimal("0.00")
        assert percent(Decimal("1"), Decimal("3")) == Decimal("33.33")


class TestOutstandingInvoices:
    """Unpaid orders grouped by customer."""

    def test_same_email_grouped(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "50.00", NOW - timedelta(days=3), status="pending", buyer_email="x@example.com"),
            order(2, "30.00", NOW - timedelta(days=1), status="pending", buyer_email="x@example.com", buyer_username="Xavier"),
            order(3, "500.00", status="paid", buyer_email="x@example.com"),
        ])

        invoices = engine.outstanding_invoices()

        assert len(invoices) == 1
        entry = invoices[0]
        assert entry.outstanding_amount == Decimal("80.00")
        assert entry.invoice_count == 2
        assert entry.customer == "Xavier"
        assert entry.email == "x@example.com"
        assert entry.platform == "Acme"
        assert entry.last_order_date == NOW - timedelta(days=1)
        assert entry.status == "pending"
        assert entry.model_dump(by_alias=True, mode="json")["outstandingAmount"] == 80.0

    def test_guests_never_merge(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "10.00", status="pending"),
            order(2, "10.00", status="partially_paid"),
        ])

        invoices = engine.outstanding_invoices()

        assert sorted(i.customer_key for i in invoices) == ["guest-1-Acme", "guest-2-Acme"]
        assert all(i.customer == "Guest" and i.email == "N/A" for i in invoices)

    def test_guest_orders_with_same_id_in_two_stores(self, temp_db):
        engine = engine_with(temp_db, [
            order(1001, "10.00", status="pending"),
            order(1001, "25.00", status="pending", store="Globex"),
        ])

        invoices = engine.outstanding_invoices()

        assert [(i.platform, i.outstanding_amount, i.invoice_count) for i in invoices] == [
            ("Globex", Decimal("25.00"), 1),
            ("Acme", Decimal("10.00"), 1),
        ]

    def test_same_email_in_two_stores_is_two_customers(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "10.00", status="pending", buyer_email="x@example.com"),
            order(2, "10.00", status="pending", buyer_email="x@example.com", store="Globex"),
        ])
        assert len(engine.outstanding_invoices()) == 2

    def test_sorted_and_limited(self, temp_db):
        engine = engine_with(temp_db, [
            order(i, f"{i}.00", status="pending", buyer_username=f"buyer{i}") for i in range(1, 13)
        ])

        invoices = engine.outstanding_invoices(limit=10)

        assert len(invoices) == 10
        assert [i.outstanding_amount for i in invoices[:2]] == [Decimal("12.00"), Decimal("11.00")]

    def test_store_filter(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "10.00", status="pending", buyer_email="a@example.com"),
            order(2, "10.00", status="pending", buyer_email="b@example.com", store="Globex"),
        ])
        invoices = engine.outstanding_invoices(AggregationFilter(store="Globex"))
        assert [i.platform for i in invoices] == ["Globex"]


class TestMargins:
    """Gross margin and the daily series."""

    def test_zero_revenue(self, temp_db):
        engine = engine_with(temp_db)

        margin = engine.gross_margin()
        assert margin.total_revenue == Decimal("0.00")
        assert margin.gross_margin_percent == Decimal("0.00")
        assert margin.order_count == 0

    def test_trailing_thirty_days(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "100.00", NOW - timedelta(days=2)),
            order(2, "100.00", NOW - timedelta(days=45)),
        ])

        margin = engine.gross_margin()

        assert margin.order_count == 1
        assert margin.total_revenue == Decimal("100.00")
        assert margin.estimated_cogs == Decimal("60.00")
        assert margin.gross_margin_dollars == Decimal("40.00")
        assert margin.gross_margin_percent == Decimal("40.00")
        assert margin.period_end == NOW
        assert "estimatedCOGS" in margin.model_dump(by_alias=True)

    def test_resolved_costs_used(self, temp_db):
        engine = engine_with(
            temp_db,
            [order(1, "40.00", lines=[LineItem(title="Frame", sku="FR-1", quantity=2, unit_price="20.00")])],
            [product(1, [Variant(sku="FR-1", price="20.00", unit_cost="10.00")])],
        )
        margin = engine.gross_margin()
        assert margin.estimated_cogs == Decimal("20.00")
        assert margin.gross_margin_percent == Decimal("50.00")

    def test_daily_series_is_gap_filled(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "100.00", NOW - timedelta(hours=1)),
            order(2, "50.00", NOW - timedelta(days=3)),
            order(3, "70.00", NOW - timedelta(days=9)),
        ])

        series = engine.daily_margins()

        assert len(series) == 7
        assert [d.date for d in series] == [TODAY - timedelta(days=n) for n in range(6, -1, -1)]
        by_day = {d.date: d for d in series}
        assert by_day[TODAY].revenue == Decimal("100.00")
        assert by_day[TODAY].margin == Decimal("40.00")
        assert by_day[TODAY - timedelta(days=3)].revenue == Decimal("50.00")
        empty = by_day[TODAY - timedelta(days=1)]
        assert (empty.revenue, empty.margin, empty.margin_percent) == (Decimal("0.00"), Decimal("0.00"), Decimal("0.00"))

    def test_daily_series_with_no_orders(self, temp_db):
        series = engine_with(temp_db).daily_margins()
        assert len(series) == 7
        assert all(d.revenue == 0 for d in series)


class TestInventory:

    def test_valuation_per_platform(self, temp_db):
        engine = engine_with(temp_db, products=[
            product(1, [Variant(price="10.00", inventory_quantity=3), Variant(price="2.50", inventory_quantity=4)]),
            product(2, [Variant(price="100.00", inventory_quantity=1)], store="Globex"),
            product(3, [Variant(price="5.00", inventory_quantity=0)], store="eBay", platform="ebay"),
        ])

        valuation = engine.inventory_valuation()

        assert valuation.total_inventory_value == Decimal("140.00")
        assert valuation.total_items == 8
        assert [(p.platform, p.value, p.items) for p in valuation.platform_values] == [
            ("Acme", Decimal("40.00"), 7),
            ("Globex", Decimal("100.00"), 1),
            ("eBay", Decimal("0.00"), 0),
        ]

    def test_date_filter_does_not_apply(self, temp_db):
        engine = engine_with(temp_db, products=[product(1, [Variant(price="10.00", inventory_quantity=1)])])
        filters = AggregationFilter(date_from=date(2000, 1, 1), date_to=date(2000, 1, 2))
        assert engine.inventory_valuation(filters).total_inventory_value == Decimal("10.00")


class TestOrderProfits:

    def test_profit_report(self, temp_db):
        engine = engine_with(
            temp_db,
            [
                order(1, "40.00", NOW - timedelta(days=1), lines=[
                    LineItem(title="Frame", sku="FR-1", quantity=2, unit_price="20.00"),
                ]),
                order(2, "25.00", NOW - timedelta(days=2), lines=[
                    LineItem(title="Aviator", quantity=1, unit_price="20.00", category="Sunglasses"),
                ]),
                order(3, "0.00", NOW - timedelta(days=40)),
            ],
            [product(1, [Variant(sku="FR-1", price="20.00", unit_cost="10.00")])],
        )

        report = engine.order_profits(limit=2, offset=0)

        assert [p.order_id for p in report.profits] == ["1", "2"]
        first, second = report.profits
        assert first.profit == Decimal("20.00")
        assert first.margin == Decimal("50.00")
        # line revenue, not total_price
        assert second.revenue == Decimal("20.00")
        assert second.cost == Decimal("11.00")
        assert second.profit == Decimal("9.00")

        assert report.summary.total_profit == Decimal("29.00")
        assert report.pagination.total == 3
        assert report.pagination.has_more
        assert report.pagination.total_pages == 2
        # only days inside the trailing window with orders
        assert [d.date for d in report.profit_by_date] == [TODAY - timedelta(days=2), TODAY - timedelta(days=1)]

        page_two = engine.order_profits(limit=2, offset=2)
        assert [p.order_id for p in page_two.profits] == ["3"]
        assert page_two.profits[0].margin == Decimal("0.00")
        assert page_two.pagination.current_page == 2
        assert not page_two.pagination.has_more


class TestStatsAndRevenue:

    def test_stats(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "100.00", NOW - timedelta(days=5), buyer_email="a@example.com", fulfillment_status="fulfilled",
                  lines=[LineItem(title="Frame", quantity=2, unit_price="50.00")]),
            order(2, "50.00", NOW - timedelta(days=40), status="pending", buyer_email="a@example.com",
                  lines=[LineItem(title="Case", quantity=1, unit_price="50.00")]),
        ])

        stats = engine.stats()

        assert stats.total_orders == 2
        assert stats.total_revenue == Decimal("150.00")
        assert stats.avg_order_value == Decimal("75.00")
        assert stats.active_orders == 1
        assert stats.total_customers == 1
        assert stats.revenue_growth == Decimal("100.00")
        assert {s.name: s.value for s in stats.fulfillment_status} == {"fulfilled": 1, "pending": 1}
        assert stats.top_products[0].title == "Frame"

    def test_growth_without_any_revenue(self, temp_db):
        stats = engine_with(temp_db).stats()
        assert stats.revenue_growth == Decimal("0.00")
        assert stats.avg_order_value == Decimal("0.00")

    def test_revenue_buckets(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "10.00", datetime(2024, 3, 4, 9, tzinfo=timezone.utc)),
            order(2, "20.00", datetime(2024, 3, 6, 9, tzinfo=timezone.utc)),
            order(3, "30.00", datetime(2024, 2, 28, 9, tzinfo=timezone.utc)),
        ])

        weekly = engine.revenue_buckets(period="week")
        assert [(b.period, b.revenue, b.orders) for b in weekly.buckets] == [
            ("2024-02-26", Decimal("30.00"), 1),
            ("2024-03-04", Decimal("30.00"), 2),
        ]
        monthly = engine.revenue_buckets(period="month")
        assert [b.period for b in monthly.buckets] == ["2024-02", "2024-03"]
        yearly = engine.revenue_buckets(period="year")
        assert [(b.period, b.revenue, b.orders) for b in yearly.buckets] == [("2024", Decimal("60.00"), 3)]

        with pytest.raises(ValueError):
            engine.revenue_buckets(period="quarter")

    def test_date_range_filter(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "10.00", datetime(2024, 3, 4, 23, 59, tzinfo=timezone.utc)),
            order(2, "20.00", datetime(2024, 3, 5, 0, 0, tzinfo=timezone.utc)),
        ])
        filters = AggregationFilter(date_from=date(2024, 3, 4), date_to=date(2024, 3, 4))
        assert engine.stats(filters).total_orders == 1


class TestOverviewAndFailures:

    def test_overview_excludes_malformed_rows(self, temp_db):
        engine = engine_with(temp_db, [
            order(1, "10.00", status="pending", buyer_email="a@example.com"),
            order(2, "20.00", status="pending", buyer_email="b@example.com"),
        ])
        conn = sqlite3.connect(temp_db)
        conn.execute("UPDATE orders SET line_items = '{broken' WHERE external_order_id = '2'")
        conn.commit()
        conn.close()

        overview = engine.financial_overview()

        assert overview.excluded_records == 1
        assert [i.email for i in overview.outstanding_invoices] == ["a@example.com"]
        assert len(overview.daily_margins) == 7
        payload = overview.model_dump(by_alias=True, mode="json")
        assert set(payload) == {"outstandingInvoices", "margins", "dailyMargins", "inventory", "excludedRecords"}

    def test_storage_unavailable(self, tmp_path):
        engine = FinancialAggregationEngine(tmp_path / "missing" / "commerce.db", clock=lambda: NOW)

        for compute in (engine.outstanding_invoices, engine.gross_margin, engine.daily_margins, engine.inventory_valuation):
            with pytest.raises(StorageUnavailableError):
                compute()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
