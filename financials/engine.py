"""Financial Aggregation Engine.

Read-only computations over the persisted orders and products. Nothing is
cached between calls: every result is rebuilt from storage, so reads may
run while a sync is writing and simply see its progress so far.

All order costs come from financials.costs.CostResolver.
"""

import math
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from core.errors import AggregationInputError
from core.models import OUTSTANDING_STATUSES, Order, Product
from core.observability import get_logger, get_metrics
from financials.costs import CostResolver
from financials.models import (
    AggregationFilter,
    DailyMargin,
    DashboardStats,
    FinancialOverview,
    GrossMargin,
    InventoryValuation,
    OrderProfit,
    OrderProfitReport,
    OutstandingInvoice,
    Pagination,
    PlatformInventory,
    ProfitByDate,
    ProfitSummary,
    RevenueBucket,
    RevenueReport,
    StatusCount,
    TopProduct,
    percent,
    quantize,
)
from storage.db import PathLike
from storage.queries import load_orders, load_products

logger = get_logger(__name__)

ZERO = Decimal("0")

OUTSTANDING_LIMIT = 10
MARGIN_WINDOW_DAYS = 30
DAILY_SERIES_DAYS = 7
PROFIT_BY_DATE_DAYS = 30
GROWTH_WINDOW_DAYS = 30
TOP_PRODUCTS_LIMIT = 10

REVENUE_PERIODS = ("day", "week", "month", "year")


def _latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _earliest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


class FinancialAggregationEngine:
    """Computes financial aggregates from storage.

    Usage:
        engine = FinancialAggregationEngine(db_path)
        invoices = engine.outstanding_invoices(AggregationFilter(store="Acme"))

    Raises (every public method):
        StorageUnavailableError: The database cannot be read
    """

    def __init__(
        self,
        db_path: Optional[PathLike] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db_path = db_path
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock()

    def _today(self) -> date:
        return self._now().astimezone(timezone.utc).date()

    # =========================================================================
    # Loading
    # =========================================================================

    def _report_excluded(self, kind: str, errors: List[AggregationInputError]) -> int:
        if errors:
            get_metrics().record_aggregation_excluded(len(errors))
            for error in errors:
                logger.warning(
                    f"Excluded malformed {kind[:-1]} {error.record_id} from aggregation: {error}",
                    extra_fields={"record_id": error.record_id},
                )
        return len(errors)

    def _load_orders(
        self,
        filters: AggregationFilter,
        created_from: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
    ) -> Tuple[List[Order], int]:
        orders, errors = load_orders(
            self.db_path,
            platform_type=filters.platform_type,
            platform_name=filters.store,
            created_from=_latest(filters.created_from, created_from),
            created_before=_earliest(filters.created_before, created_before),
        )
        return orders, self._report_excluded("orders", errors)

    def _load_products(self, filters: AggregationFilter) -> Tuple[List[Product], int]:
        products, errors = load_products(
            self.db_path,
            platform_type=filters.platform_type,
            platform_name=filters.store,
        )
        return products, self._report_excluded("products", errors)

    def _resolver(self, filters: AggregationFilter) -> CostResolver:
        products, _ = self._load_products(filters)
        return CostResolver(products)

    # =========================================================================
    # Outstanding invoices
    # =========================================================================

    def outstanding_invoices(
        self,
        filters: AggregationFilter = AggregationFilter(),
        limit: int = OUTSTANDING_LIMIT,
    ) -> List[OutstandingInvoice]:
        """Unpaid orders grouped by customer, largest outstanding amount first."""
        orders, _ = self._load_orders(filters)
        return self._outstanding(orders, limit)

    def _outstanding(self, orders: List[Order], limit: int) -> List[OutstandingInvoice]:
        groups: "OrderedDict[str, Dict]" = OrderedDict()

        # Newest first, so the first order seen per group is the latest one
        for order in sorted(orders, key=lambda o: o.created_at, reverse=True):
            if order.financial_status not in OUTSTANDING_STATUSES:
                continue
            key = order.customer_key
            if key not in groups:
                groups[key] = {
                    "customer": order.buyer_username or order.buyer_email or "Guest",
                    "email": order.buyer_email or "N/A",
                    "platform": order.platform_name,
                    "amount": ZERO,
                    "count": 0,
                    "last": order.created_at,
                    "status": order.financial_status.value,
                }
            group = groups[key]
            group["amount"] += order.total_price
            group["count"] += 1

        ranked = sorted(groups.items(), key=lambda item: (-item[1]["amount"], item[0]))
        return [
            OutstandingInvoice(
                customer=group["customer"],
                email=group["email"],
                platform=group["platform"],
                outstanding_amount=quantize(group["amount"]),
                invoice_count=group["count"],
                last_order_date=group["last"],
                status=group["status"],
                customer_key=key,
            )
            for key, group in ranked[:limit]
        ]

    # =========================================================================
    # Margins
    # =========================================================================

    def gross_margin(self, filters: AggregationFilter = AggregationFilter()) -> GrossMargin:
        """Revenue, COGS and margin over the trailing 30 days."""
        now = self._now()
        orders, _ = self._load_orders(filters, created_from=now - timedelta(days=MARGIN_WINDOW_DAYS))
        return self._gross_margin(orders, self._resolver(filters), now)

    def _gross_margin(self, orders: List[Order], resolver: CostResolver, now: datetime) -> GrossMargin:
        start = now - timedelta(days=MARGIN_WINDOW_DAYS)
        window = [o for o in orders if start <= o.created_at <= now]

        revenue = sum((o.total_price for o in window), ZERO)
        cost = sum((resolver.order_cost(o) for o in window), ZERO)
        margin = revenue - cost

        return GrossMargin(
            total_revenue=quantize(revenue),
            estimated_cogs=quantize(cost),
            gross_margin_dollars=quantize(margin),
            gross_margin_percent=percent(margin, revenue),
            order_count=len(window),
            period_start=start,
            period_end=now,
        )

    def daily_margins(self, filters: AggregationFilter = AggregationFilter()) -> List[DailyMargin]:
        """One entry per day for the last 7 days including today, oldest first."""
        first_day = self._today() - timedelta(days=DAILY_SERIES_DAYS - 1)
        created_from = datetime(first_day.year, first_day.month, first_day.day, tzinfo=timezone.utc)
        orders, _ = self._load_orders(filters, created_from=created_from)
        return self._daily_margins(orders, self._resolver(filters))

    def _daily_margins(self, orders: List[Order], resolver: CostResolver) -> List[DailyMargin]:
        today = self._today()
        days = [today - timedelta(days=offset) for offset in range(DAILY_SERIES_DAYS - 1, -1, -1)]
        revenue = {day: ZERO for day in days}
        cost = {day: ZERO for day in days}

        for order in orders:
            day = order.created_at.date()
            if day in revenue:
                revenue[day] += order.total_price
                cost[day] += resolver.order_cost(order)

        series = []
        for day in days:
            margin = revenue[day] - cost[day]
            series.append(DailyMargin(
                date=day,
                revenue=quantize(revenue[day]),
                margin=quantize(margin),
                margin_percent=percent(margin, revenue[day]),
            ))
        return series

    # =========================================================================
    # Inventory
    # =========================================================================

    def inventory_valuation(self, filters: AggregationFilter = AggregationFilter()) -> InventoryValuation:
        """Value of current stock (quantity x price); date filters do not apply."""
        products, _ = self._load_products(filters)
        return self._inventory(products)

    def _inventory(self, products: List[Product]) -> InventoryValuation:
        per_platform: "OrderedDict[str, Dict]" = OrderedDict()
        total_value = ZERO
        total_items = 0

        for product in products:
            bucket = per_platform.setdefault(product.platform_name, {"value": ZERO, "items": 0})
            for variant in product.variants:
                value = variant.price * variant.inventory_quantity
                bucket["value"] += value
                bucket["items"] += variant.inventory_quantity
                total_value += value
                total_items += variant.inventory_quantity

        return InventoryValuation(
            total_inventory_value=quantize(total_value),
            total_items=total_items,
            platform_values=[
                PlatformInventory(platform=name, value=quantize(data["value"]), items=data["items"])
                for name, data in sorted(per_platform.items())
            ],
        )

    # =========================================================================
    # Order profits
    # =========================================================================

    def order_profits(
        self,
        filters: AggregationFilter = AggregationFilter(),
        limit: int = 10,
        offset: int = 0,
    ) -> OrderProfitReport:
        """Per-order profit, newest first, with summary and 30-day profit by date."""
        limit = max(1, limit)
        offset = max(0, offset)

        orders, _ = self._load_orders(filters)
        resolver = self._resolver(filters)

        profits = []
        total_revenue = total_cost = ZERO
        total_items = 0
        by_date: Dict[date, Dict[str, Decimal]] = {}
        first_day = self._today() - timedelta(days=PROFIT_BY_DATE_DAYS)

        for index, order in enumerate(orders):
            revenue = resolver.order_line_revenue(order)
            cost = resolver.order_cost(order)
            profit = revenue - cost

            total_revenue += revenue
            total_cost += cost
            total_items += len(order.line_items)

            created_date = order.created_at.date()
            if created_date >= first_day:
                day = by_date.setdefault(created_date, {"revenue": ZERO, "cost": ZERO})
                day["revenue"] += revenue
                day["cost"] += cost

            if offset <= index < offset + limit:
                profits.append(OrderProfit(
                    order_id=order.external_order_id,
                    order_number=order.order_number,
                    store=order.platform_name,
                    store_type=order.platform_type,
                    revenue=quantize(revenue),
                    cost=quantize(cost),
                    profit=quantize(profit),
                    margin=percent(profit, revenue),
                    items_count=len(order.line_items),
                    created_at=order.created_at,
                    created_date=created_date,
                ))

        total_profit = total_revenue - total_cost
        total = len(orders)

        return OrderProfitReport(
            profits=profits,
            summary=ProfitSummary(
                total_revenue=quantize(total_revenue),
                total_cost=quantize(total_cost),
                total_profit=quantize(total_profit),
                total_items=total_items,
                average_margin=percent(total_profit, total_revenue),
            ),
            profit_by_date=[
                ProfitByDate(
                    date=day,
                    revenue=quantize(values["revenue"]),
                    cost=quantize(values["cost"]),
                    profit=quantize(values["revenue"] - values["cost"]),
                )
                for day, values in sorted(by_date.items())
            ],
            pagination=Pagination(
                total=total,
                limit=limit,
                offset=offset,
                has_more=offset + limit < total,
                total_pages=math.ceil(total / limit),
                current_page=offset // limit + 1,
            ),
        )

    # =========================================================================
    # Stats / revenue
    # =========================================================================

    def stats(self, filters: AggregationFilter = AggregationFilter()) -> DashboardStats:
        """Headline order statistics and status breakdowns."""
        orders, _ = self._load_orders(filters)
        now = self._now()
        recent_start = now - timedelta(days=GROWTH_WINDOW_DAYS)
        previous_start = recent_start - timedelta(days=GROWTH_WINDOW_DAYS)

        total_revenue = sum((o.total_price for o in orders), ZERO)
        recent = sum((o.total_price for o in orders if recent_start <= o.created_at <= now), ZERO)
        previous = sum((o.total_price for o in orders if previous_start <= o.created_at < recent_start), ZERO)

        if previous:
            growth = percent(recent - previous, previous)
        else:
            growth = Decimal("100.00") if recent > 0 else Decimal("0.00")

        financial: Dict[str, int] = {}
        fulfillment: Dict[str, int] = {}
        products: Dict[str, Dict] = {}
        for order in orders:
            financial[order.financial_status.value] = financial.get(order.financial_status.value, 0) + 1
            status = order.fulfillment_status or "pending"
            fulfillment[status] = fulfillment.get(status, 0) + 1
            for line in order.line_items:
                entry = products.setdefault(line.title, {"units": 0, "revenue": ZERO})
                entry["units"] += line.quantity
                entry["revenue"] += line.line_revenue

        def breakdown(counts: Dict[str, int]) -> List[StatusCount]:
            return [
                StatusCount(name=name, value=value)
                for name, value in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
            ]

        top = sorted(products.items(), key=lambda item: (-item[1]["revenue"], item[0]))[:TOP_PRODUCTS_LIMIT]

        return DashboardStats(
            total_revenue=quantize(total_revenue),
            total_orders=len(orders),
            avg_order_value=quantize(total_revenue / len(orders)) if orders else Decimal("0.00"),
            active_orders=sum(1 for o in orders if o.fulfillment_status != "fulfilled"),
            total_customers=len({o.buyer_email for o in orders if o.buyer_email}),
            recent_revenue=quantize(recent),
            previous_revenue=quantize(previous),
            revenue_growth=growth,
            financial_status=breakdown(financial),
            fulfillment_status=breakdown(fulfillment),
            top_products=[
                TopProduct(title=title, units=data["units"], revenue=quantize(data["revenue"]))
                for title, data in top
            ],
        )

    def revenue_buckets(
        self,
        filters: AggregationFilter = AggregationFilter(),
        period: str = "day",
    ) -> RevenueReport:
        """Revenue and order counts per day, ISO week (Monday start), month or year."""
        if period not in REVENUE_PERIODS:
            raise ValueError(f"Unknown period {period!r}, expected one of {REVENUE_PERIODS}")

        orders, _ = self._load_orders(filters)
        buckets: Dict[str, Dict] = {}
        for order in orders:
            day = order.created_at.date()
            if period == "day":
                key = day.isoformat()
            elif period == "week":
                key = (day - timedelta(days=day.weekday())).isoformat()
            elif period == "month":
                key = day.strftime("%Y-%m")
            else:
                key = day.strftime("%Y")
            bucket = buckets.setdefault(key, {"revenue": ZERO, "orders": 0})
            bucket["revenue"] += order.total_price
            bucket["orders"] += 1

        return RevenueReport(
            period=period,
            buckets=[
                RevenueBucket(period=key, revenue=quantize(data["revenue"]), orders=data["orders"])
                for key, data in sorted(buckets.items())
            ],
        )

    # =========================================================================
    # Overview
    # =========================================================================

    def financial_overview(self, filters: AggregationFilter = AggregationFilter()) -> FinancialOverview:
        """Outstanding invoices, margins, daily margins and inventory in one read."""
        orders, excluded_orders = self._load_orders(filters)
        products, excluded_products = self._load_products(filters)
        resolver = CostResolver(products)

        logger.debug(
            f"Financial overview over {len(orders)} orders and {len(products)} products",
            extra_fields={"store": filters.store, "platform_type": filters.platform_type},
        )

        return FinancialOverview(
            outstanding_invoices=self._outstanding(orders, OUTSTANDING_LIMIT),
            margins=self._gross_margin(orders, resolver, self._now()),
            daily_margins=self._daily_margins(orders, resolver),
            inventory=self._inventory(products),
            excluded_records=excluded_orders + excluded_products,
        )
