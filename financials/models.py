"""
Financial aggregation result models.

Field names are snake_case in Python and camelCase on the wire
(``outstandingAmount``, ``invoiceCount``, ``marginPercent``, ...).
Money stays Decimal until serialization, where it becomes a JSON number.

Hierarchy:
- AggregationFilter: store / platform / date-range scope of a read
- OutstandingInvoice, GrossMargin, DailyMargin, InventoryValuation
- OrderProfitReport: per-order profit page with summary and pagination
- DashboardStats, RevenueReport
- FinancialOverview: combined payload of the four core computations
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel
from typing_extensions import Annotated

CENT = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    """Round to cents for presentation."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole x 100 rounded to cents; 0 when whole is 0."""
    if not whole:
        return Decimal("0.00")
    return quantize(part / whole * 100)


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
Percent = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


# =============================================================================
# FILTERS
# =============================================================================

@dataclass(frozen=True)
class AggregationFilter:
    """Scope of a read. Dates are inclusive whole UTC days."""
    store: Optional[str] = None
    platform_type: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @property
    def created_from(self) -> Optional[datetime]:
        if self.date_from is None:
            return None
        return datetime.combine(self.date_from, time.min, tzinfo=timezone.utc)

    @property
    def created_before(self) -> Optional[datetime]:
        if self.date_to is None:
            return None
        return datetime.combine(self.date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)


# =============================================================================
# BASE MODEL
# =============================================================================

class ResponseBase(BaseModel):
    """Base class for aggregation results."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# =============================================================================
# CORE COMPUTATIONS
# =============================================================================

class OutstandingInvoice(ResponseBase):
    """Unpaid orders of one customer in one store."""
    customer: str = Field(..., description="Buyer name, email or 'Guest'")
    email: str = Field(..., description="Buyer email or 'N/A'")
    platform: str = Field(..., description="Store name")
    outstanding_amount: Money = Field(..., description="Sum of unpaid order totals")
    invoice_count: int = Field(..., description="Number of unpaid orders")
    last_order_date: datetime = Field(..., description="Most recent unpaid order")
    status: str = Field(..., description="Financial status of the most recent unpaid order")
    customer_key: str = Field(..., description="Grouping key")


class GrossMargin(ResponseBase):
    """Margin over the trailing 30 days."""
    total_revenue: Money
    estimated_cogs: Money = Field(..., alias="estimatedCOGS")
    gross_margin_dollars: Money
    gross_margin_percent: Percent
    order_count: int = 0
    period_start: datetime
    period_end: datetime


class DailyMargin(ResponseBase):
    date: date
    revenue: Money
    margin: Money
    margin_percent: Percent


class PlatformInventory(ResponseBase):
    platform: str
    value: Money
    items: int


class InventoryValuation(ResponseBase):
    total_inventory_value: Money
    total_items: int = 0
    platform_values: List[PlatformInventory] = Field(default_factory=list)


# =============================================================================
# PROFIT REPORT
# =============================================================================

class OrderProfit(ResponseBase):
    order_id: str
    order_number: Optional[str] = None
    store: str
    store_type: str
    revenue: Money
    cost: Money
    profit: Money
    margin: Percent
    items_count: int
    created_at: datetime
    created_date: date


class ProfitSummary(ResponseBase):
    total_revenue: Money
    total_cost: Money
    total_profit: Money
    total_items: int
    average_margin: Percent


class ProfitByDate(ResponseBase):
    date: date
    revenue: Money
    cost: Money
    profit: Money


class Pagination(ResponseBase):
    total: int
    limit: int
    offset: int
    has_more: bool
    total_pages: int
    current_page: int


class OrderProfitReport(ResponseBase):
    profits: List[OrderProfit] = Field(default_factory=list)
    summary: ProfitSummary
    profit_by_date: List[ProfitByDate] = Field(default_factory=list)
    pagination: Pagination


# =============================================================================
# STATS / REVENUE
# =============================================================================

class StatusCount(ResponseBase):
    name: str
    value: int


class TopProduct(ResponseBase):
    title: str
    units: int
    revenue: Money


class DashboardStats(ResponseBase):
    total_revenue: Money
    total_orders: int
    avg_order_value: Money
    active_orders: int
    total_customers: int
    recent_revenue: Money
    previous_revenue: Money
    revenue_growth: Percent
    financial_status: List[StatusCount] = Field(default_factory=list)
    fulfillment_status: List[StatusCount] = Field(default_factory=list)
    top_products: List[TopProduct] = Field(default_factory=list)


class RevenueBucket(ResponseBase):
    period: str = Field(..., description="YYYY-MM-DD (day / week start), YYYY-MM or YYYY")
    revenue: Money
    orders: int


class RevenueReport(ResponseBase):
    period: str
    buckets: List[RevenueBucket] = Field(default_factory=list)


# =============================================================================
# OVERVIEW
# =============================================================================

class FinancialOverview(ResponseBase):
    outstanding_invoices: List[OutstandingInvoice] = Field(default_factory=list)
    margins: GrossMargin
    daily_margins: List[DailyMargin] = Field(default_factory=list)
    inventory: InventoryValuation
    excluded_records: int = Field(0, description="Stored records left out because they are malformed")
