"""
Analytics result shapes.
"""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from src.domain.models import CustomerSegment, RiskLevel


class GrowthRates(BaseModel):
    """Period-over-period growth in whole percent"""
    revenue: int = 0
    orders: int = 0
    new_customers: int = 0
    avg_order_value: int = 0


class KPISummary(BaseModel):
    """Headline metrics for one window plus growth against the previous one"""
    days: int
    revenue: float = 0.0
    orders: int = 0
    new_customers: int = 0
    avg_order_value: float = 0.0
    growth: GrowthRates = Field(default_factory=GrowthRates)

    @classmethod
    def empty(cls, days: int) -> "KPISummary":
        return cls(days=days)


class SeriesPoint(BaseModel):
    """Daily sales data point"""
    date: date
    order_count: int = 0
    revenue: float = 0.0


class BreakdownRow(BaseModel):
    """One group of a category/payment/geography breakdown"""
    key: str
    count: int
    revenue: float


class CustomerInsights(BaseModel):
    customer_id: str
    segment: CustomerSegment
    risk_level: RiskLevel
    risk_score: float
    days_since_last_order: Optional[int] = None
    recommendations: List[str] = Field(default_factory=list)
    total_orders: int = 0
    total_spent: float = 0.0
    avg_order_value: float = 0.0
    churn_risk: RiskLevel = RiskLevel.LOW
    engagement_score: int = 0
    stored_segmentation: CustomerSegment = CustomerSegment.NEW


class TopCustomer(BaseModel):
    customer_id: str
    orders: int
    total_spent: float


class OrderAnalytics(BaseModel):
    days: int
    total_orders: int = 0
    status_breakdown: Dict[str, int] = Field(default_factory=dict)
    payment_status_breakdown: Dict[str, int] = Field(default_factory=dict)
    payment_methods: List[BreakdownRow] = Field(default_factory=list)
    flagged_orders: int = 0
    top_customers: List[TopCustomer] = Field(default_factory=list)

    @classmethod
    def empty(cls, days: int) -> "OrderAnalytics":
        return cls(days=days)


class TopProduct(BaseModel):
    sku: str
    name: str
    category: str
    units_sold: int
    revenue: float


class SalesAnomaly(BaseModel):
    metric: str
    date: date
    anomaly_type: str
    severity: str
    value: float
    expected_value: float
    deviation: float
    message: str


class Dashboard(BaseModel):
    days: int
    kpis: KPISummary
    sales_series: List[SeriesPoint] = Field(default_factory=list)
    categories: List[BreakdownRow] = Field(default_factory=list)
    top_products: List[TopProduct] = Field(default_factory=list)
