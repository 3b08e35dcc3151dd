"""
Analytics API Endpoints

Every response is a source envelope:

    {"data": ..., "source": "primary|secondary|unavailable",
     "degraded": bool, "errors": [...], "cached_at": iso-or-null}

A degraded envelope is still a 200; callers decide whether stale or empty
numbers are acceptable.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
import structlog

from src.analytics.aggregator import MetricsAggregator
from src.config import get_settings
from src.gateway.fallback import SourceResult
from src.serving.api.dependencies import get_aggregator

settings = get_settings()
router = APIRouter()
logger = structlog.get_logger(__name__)

DAYS_DESCRIPTION = "Lookback window in days"
TIMEOUT_DESCRIPTION = "Whole-call timeout in seconds"


def _days(days: Optional[int]) -> int:
    return settings.analytics.default_days if days is None else days


def _respond(response: Response, result: SourceResult) -> Dict[str, Any]:
    response.headers["X-Data-Source"] = result.kind.value
    return result.envelope()


@router.get("/kpis")
async def get_kpis(
    response: Response,
    days: Optional[int] = Query(None, description=DAYS_DESCRIPTION),
    timeout: Optional[float] = Query(None, gt=0, description=TIMEOUT_DESCRIPTION),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    """Revenue, orders, new customers and average order value with growth."""
    result = await aggregator.get_kpis(_days(days), timeout=timeout)
    return _respond(response, result)


@router.get("/sales-series")
async def get_sales_series(
    response: Response,
    days: Optional[int] = Query(None, description=DAYS_DESCRIPTION),
    timeout: Optional[float] = Query(None, gt=0, description=TIMEOUT_DESCRIPTION),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    """One zero-filled point per day, oldest first."""
    result = await aggregator.get_sales_series(_days(days), timeout=timeout)
    return _respond(response, result)


@router.get("/breakdown")
async def get_breakdown(
    response: Response,
    dimension: str = Query("category", description="category, payment_method or geography"),
    days: Optional[int] = Query(None, description="Lookback in days, all time when omitted"),
    level: str = Query("state", description="Geography level: state, city or pincode"),
    timeout: Optional[float] = Query(None, gt=0, description=TIMEOUT_DESCRIPTION),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    result = await aggregator.get_breakdown(dimension, days, level=level, timeout=timeout)
    return _respond(response, result)


@router.get("/orders")
async def get_order_analytics(
    response: Response,
    days: Optional[int] = Query(None, description=DAYS_DESCRIPTION),
    timeout: Optional[float] = Query(None, gt=0, description=TIMEOUT_DESCRIPTION),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    """Status, payment and suspicious-order breakdowns plus top customers."""
    result = await aggregator.get_order_analytics(_days(days), timeout=timeout)
    return _respond(response, result)


@router.get("/top-products")
async def get_top_products(
    response: Response,
    days: Optional[int] = Query(None, description=DAYS_DESCRIPTION),
    limit: int = Query(10, description="Products to return"),
    timeout: Optional[float] = Query(None, gt=0, description=TIMEOUT_DESCRIPTION),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    result = await aggregator.get_top_products(_days(days), limit=limit, timeout=timeout)
    return _respond(response, result)


@router.get("/anomalies")
async def get_sales_anomalies(
    response: Response,
    days: Optional[int] = Query(None, description=DAYS_DESCRIPTION),
    timeout: Optional[float] = Query(None, gt=0, description=TIMEOUT_DESCRIPTION),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    result = await aggregator.get_sales_anomalies(_days(days), timeout=timeout)
    return _respond(response, result)


@router.get("/dashboard")
async def get_dashboard(
    response: Response,
    days: Optional[int] = Query(None, description=DAYS_DESCRIPTION),
    timeout: Optional[float] = Query(None, gt=0, description=TIMEOUT_DESCRIPTION),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    """KPIs, sales series, category breakdown and top products in one call."""
    result = await aggregator.get_dashboard(_days(days), timeout=timeout)
    if result.degraded:
        logger.info("Serving degraded dashboard", source=result.kind.value)
    return _respond(response, result)
