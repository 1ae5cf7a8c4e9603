"""Financials - read-side aggregates over synced orders and products."""

from financials.costs import (
    CATEGORY_COGS_RATES,
    DEFAULT_COGS_RATE,
    CostResolver,
    CostSource,
    ResolvedCost,
)
from financials.models import (
    AggregationFilter,
    OutstandingInvoice,
    GrossMargin,
    DailyMargin,
    PlatformInventory,
    InventoryValuation,
    OrderProfit,
    OrderProfitReport,
    DashboardStats,
    RevenueReport,
    FinancialOverview,
)
from financials.engine import FinancialAggregationEngine, REVENUE_PERIODS

__all__ = [
    # Costs
    "CATEGORY_COGS_RATES",
    "DEFAULT_COGS_RATE",
    "CostResolver",
    "CostSource",
    "ResolvedCost",

    # Models
    "AggregationFilter",
    "OutstandingInvoice",
    "GrossMargin",
    "DailyMargin",
    "PlatformInventory",
    "InventoryValuation",
    "OrderProfit",
    "OrderProfitReport",
    "DashboardStats",
    "RevenueReport",
    "FinancialOverview",

    # Engine
    "FinancialAggregationEngine",
    "REVENUE_PERIODS",
]
