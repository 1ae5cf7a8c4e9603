"""Financial aggregate endpoints.

Every endpoint accepts the same scope parameters: ``store`` (store name,
"All" for every store), ``platform_type``, ``date_from`` and ``date_to``
(inclusive dates). Endpoints are plain functions so the SQLite reads run
in FastAPI's thread pool.
"""

from datetime import date
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from financials import (
    AggregationFilter,
    DailyMargin,
    DashboardStats,
    FinancialAggregationEngine,
    FinancialOverview,
    GrossMargin,
    InventoryValuation,
    OrderProfitReport,
    OutstandingInvoice,
    RevenueReport,
)


router = APIRouter()


def get_filters(
    store: Optional[str] = Query(None, description="Store name; 'All' or empty for every store"),
    platform_type: Optional[str] = Query(None, description="shopify or ebay"),
    date_from: Optional[date] = Query(None, description="First day, inclusive (UTC)"),
    date_to: Optional[date] = Query(None, description="Last day, inclusive (UTC)"),
) -> AggregationFilter:
    if date_from and date_to and date_from > date_to:
        raise HTTPException(status_code=422, detail="date_from must not be after date_to")
    return AggregationFilter(
        store=store if store and store != "All" else None,
        platform_type=platform_type or None,
        date_from=date_from,
        date_to=date_to,
    )


def get_engine(request: Request) -> FinancialAggregationEngine:
    return request.app.state.engine


@router.get("", response_model=FinancialOverview, response_model_by_alias=True)
def financial_overview(
    filters: AggregationFilter = Depends(get_filters),
    engine: FinancialAggregationEngine = Depends(get_engine),
) -> FinancialOverview:
    """Outstanding invoices, margins, daily margins and inventory."""
    return engine.financial_overview(filters)


@router.get("/outstanding-invoices", response_model=List[OutstandingInvoice])
def outstanding_invoices(
    limit: int = Query(10, ge=1, le=100),
    filters: AggregationFilter = Depends(get_filters),
    engine: FinancialAggregationEngine = Depends(get_engine),
) -> List[OutstandingInvoice]:
    return engine.outstanding_invoices(filters, limit=limit)


@router.get("/margins", response_model=GrossMargin)
def gross_margin(
    filters: AggregationFilter = Depends(get_filters),
    engine: FinancialAggregationEngine = Depends(get_engine),
) -> GrossMargin:
    return engine.gross_margin(filters)


@router.get("/daily-margins", response_model=List[DailyMargin])
def daily_margins(
    filters: AggregationFilter = Depends(get_filters),
    engine: FinancialAggregationEngine = Depends(get_engine),
) -> List[DailyMargin]:
    return engine.daily_margins(filters)


@router.get("/inventory", response_model=InventoryValuation)
def inventory_valuation(
    filters: AggregationFilter = Depends(get_filters),
    engine: FinancialAggregationEngine = Depends(get_engine),
) -> InventoryValuation:
    return engine.inventory_valuation(filters)


@router.get("/profits", response_model=OrderProfitReport)
def order_profits(
    limit: int = Query(10, ge=1, le=250),
    offset: int = Query(0, ge=0),
    filters: AggregationFilter = Depends(get_filters),
    engine: FinancialAggregationEngine = Depends(get_engine),
) -> OrderProfitReport:
    return engine.order_profits(filters, limit=limit, offset=offset)


@router.get("/stats", response_model=DashboardStats)
def stats(
    filters: AggregationFilter = Depends(get_filters),
    engine: FinancialAggregationEngine = Depends(get_engine),
) -> DashboardStats:
    return engine.stats(filters)


@router.get("/revenue", response_model=RevenueReport)
def revenue(
    period: Literal["day", "week", "month", "year"] = Query("day"),
    filters: AggregationFilter = Depends(get_filters),
    engine: FinancialAggregationEngine = Depends(get_engine),
) -> RevenueReport:
    return engine.revenue_buckets(filters, period=period)
