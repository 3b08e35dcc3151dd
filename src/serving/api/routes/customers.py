"""
Customers API Endpoints
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response

from src.analytics.aggregator import MetricsAggregator
from src.serving.api.dependencies import get_aggregator

router = APIRouter()


@router.get("/{customer_id}/insights")
async def get_customer_insights(
    customer_id: str,
    response: Response,
    timeout: Optional[float] = Query(None, gt=0, description="Whole-call timeout in seconds"),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> Dict[str, Any]:
    """
    Segment, risk, recommendations, churn and engagement for one customer.

    404 when the serving source has no such customer. When no source
    answers in time, `data` is null and `source` is "unavailable".
    """
    result = await aggregator.get_customer_insights(customer_id, timeout=timeout)
    response.headers["X-Data-Source"] = result.kind.value
    return result.envelope()
