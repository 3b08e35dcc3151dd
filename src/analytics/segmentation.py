"""
Customer Segmentation

Pure functions deriving segment, risk, churn, engagement and recommendations
from a customer's own orders. No I/O here; the aggregator feeds them.

Segments are checked top-down, first match wins:

    vip        orders >= 10 and spent >= 50,000
    loyal      orders >= 5  and spent >= 20,000
    returning  orders >= 2
    new        everything else
"""

import math
from datetime import datetime
from typing import Iterable, List, Optional

from src.domain.models import (
    Customer,
    CustomerSegment,
    Order,
    OrderStatus,
    PaymentStatus,
    RiskLevel,
)

# (segment, min orders, min spent), checked in order
SEGMENT_RULES = [
    (CustomerSegment.VIP, 10, 50000.0),
    (CustomerSegment.LOYAL, 5, 20000.0),
    (CustomerSegment.RETURNING, 2, 0.0),
]

HIGH_RISK_SCORE = 30.0
MEDIUM_RISK_SCORE = 15.0

REC_WELCOME = "Send welcome series to encourage repeat purchase"
REC_VIP = "Offer exclusive VIP benefits and early access"
REC_REVIEW = "Review account for potential fraud or issues"
REC_WIN_BACK = "Send re-engagement campaign to win back customer"
REC_TARGETED = "Send targeted offers to encourage next purchase"


def segment_for(total_orders: int, total_spent: float) -> CustomerSegment:
    for segment, min_orders, min_spent in SEGMENT_RULES:
        if total_orders >= min_orders and total_spent >= min_spent:
            return segment
    return CustomerSegment.NEW


def risk_score(orders: Iterable[Order]) -> float:
    """
    (failed payments + cancelled orders) / orders * 100.

    Failed and cancelled are counted separately, so an order that is both
    adds twice and the score can pass 100. No orders scores 0.
    """
    orders = list(orders)
    if not orders:
        return 0.0
    failed = sum(1 for order in orders if order.payment_status == PaymentStatus.FAILED)
    cancelled = sum(1 for order in orders if order.status == OrderStatus.CANCELLED)
    return (failed + cancelled) / len(orders) * 100


def risk_level(score: float) -> RiskLevel:
    if score > HIGH_RISK_SCORE:
        return RiskLevel.HIGH
    if score > MEDIUM_RISK_SCORE:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def days_since(ts: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days elapsed, floored"""
    if ts is None:
        return None
    return max(0, math.floor((now - ts).total_seconds() / 86400))


def _days_since_ceil(ts: Optional[datetime], now: datetime) -> Optional[int]:
    if ts is None:
        return None
    return max(0, math.ceil((now - ts).total_seconds() / 86400))


def recommendations(
    segment: CustomerSegment,
    level: RiskLevel,
    days_since_last_order: Optional[int],
) -> List[str]:
    """Fixed evaluation order; several may apply at once"""
    recs: List[str] = []
    if segment == CustomerSegment.NEW:
        recs.append(REC_WELCOME)
    elif segment == CustomerSegment.VIP:
        recs.append(REC_VIP)

    if level == RiskLevel.HIGH:
        recs.append(REC_REVIEW)

    if days_since_last_order is not None:
        if days_since_last_order > 90:
            recs.append(REC_WIN_BACK)
        elif days_since_last_order > 30:
            recs.append(REC_TARGETED)
    return recs


def churn_risk(days_inactive: int) -> RiskLevel:
    if days_inactive > 120:
        return RiskLevel.HIGH
    if days_inactive > 60:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def churn_risk_for(customer: Customer, last_order_date: Optional[datetime], now: datetime) -> RiskLevel:
    """Inactivity is measured from the last order, or registration when there is none"""
    reference = last_order_date or customer.registration_date
    return churn_risk(_days_since_ceil(reference, now) or 0)


def engagement_score(
    customer: Customer,
    total_orders: int,
    last_order_date: Optional[datetime],
    now: datetime,
) -> int:
    """
    Engagement on a 0-100 scale.

    Login recency up to 30, order recency up to 40, order count up to 20,
    contact completeness up to 10.
    """
    score = 0

    login_days = _days_since_ceil(customer.last_login_at, now)
    if login_days is not None:
        if login_days <= 7:
            score += 30
        elif login_days <= 30:
            score += 20
        elif login_days <= 90:
            score += 10

    order_days = _days_since_ceil(last_order_date, now)
    if order_days is not None:
        if order_days <= 30:
            score += 40
        elif order_days <= 60:
            score += 30
        elif order_days <= 90:
            score += 20
        elif order_days <= 180:
            score += 10

    if total_orders >= 20:
        score += 20
    elif total_orders >= 10:
        score += 15
    elif total_orders >= 5:
        score += 10
    elif total_orders >= 1:
        score += 5

    if customer.name:
        score += 2
    if customer.email:
        score += 4
    if customer.phone:
        score += 4

    return min(score, 100)


def stored_segmentation(segment: CustomerSegment, churn: RiskLevel) -> CustomerSegment:
    """Segment persisted on the customer: established customers drifting away are at_risk"""
    if churn == RiskLevel.HIGH and segment != CustomerSegment.NEW:
        return CustomerSegment.AT_RISK
    return segment
