"""
Unit Tests - Growth and Customer Segmentation
"""
from datetime import timedelta

import pytest

from src.analytics.calculations import growth_rate, safe_average
from src.analytics.segmentation import (
    REC_REVIEW,
    REC_TARGETED,
    REC_VIP,
    REC_WELCOME,
    REC_WIN_BACK,
    churn_risk,
    churn_risk_for,
    days_since,
    engagement_score,
    recommendations,
    risk_level,
    risk_score,
    segment_for,
    stored_segmentation,
)
from src.domain.models import CustomerSegment, OrderStatus, PaymentStatus, RiskLevel

from tests.factories import NOW, make_customer, make_order


class TestGrowthRate:
    """Tests for period-over-period growth"""

    @pytest.mark.parametrize(
        "previous,current,expected",
        [
            (0, 0, 0),
            (0, 250, 100),
            (100, 50, -50),
            (100, 150, 50),
            (3, 4, 33),
            (8, 9, 13),  # 12.5 rounds half up
            (8, 7, -12),  # -12.5 rounds half up
        ],
    )
    def test_growth_rate(self, previous, current, expected):
        assert growth_rate(previous, current) == expected

    def test_safe_average_empty(self):
        assert safe_average(0.0, 0) == 0.0
        assert safe_average(100.0, 3) == 33.33


class TestSegments:
    @pytest.mark.parametrize(
        "orders,spent,expected",
        [
            (0, 0, CustomerSegment.NEW),
            (1, 100000, CustomerSegment.NEW),
            (2, 0, CustomerSegment.RETURNING),
            (5, 19999.99, CustomerSegment.RETURNING),
            (5, 20000, CustomerSegment.LOYAL),
            (10, 49999, CustomerSegment.LOYAL),
            (10, 50000, CustomerSegment.VIP),
        ],
    )
    def test_segment_rules(self, orders, spent, expected):
        assert segment_for(orders, spent) == expected

    def test_established_high_churn_is_at_risk(self):
        assert stored_segmentation(CustomerSegment.LOYAL, RiskLevel.HIGH) == CustomerSegment.AT_RISK
        assert stored_segmentation(CustomerSegment.NEW, RiskLevel.HIGH) == CustomerSegment.NEW
        assert stored_segmentation(CustomerSegment.VIP, RiskLevel.MEDIUM) == CustomerSegment.VIP


class TestRisk:
    """Tests for the order risk score"""

    def test_no_orders_scores_zero(self):
        assert risk_score([]) == 0.0
        assert risk_level(0.0) == RiskLevel.LOW

    def test_failed_and_cancelled_order_counts_twice(self):
        orders = [
            make_order("O1", status=OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED),
            make_order("O2"),
            make_order("O3"),
            make_order("O4"),
        ]
        assert risk_score(orders) == 50.0
        assert risk_level(risk_score(orders)) == RiskLevel.HIGH

    def test_score_is_not_capped(self):
        orders = [
            make_order(f"O{i}", status=OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED)
            for i in range(3)
        ]
        assert risk_score(orders) == 200.0

    @pytest.mark.parametrize(
        "score,expected",
        [(15.0, RiskLevel.LOW), (15.01, RiskLevel.MEDIUM), (30.0, RiskLevel.MEDIUM), (30.5, RiskLevel.HIGH)],
    )
    def test_levels_use_strict_thresholds(self, score, expected):
        assert risk_level(score) == expected


class TestRecommendations:
    def test_new_customer_gets_welcome_only(self):
        assert recommendations(CustomerSegment.NEW, RiskLevel.LOW, 5) == [REC_WELCOME]

    def test_vip_high_risk_inactive(self):
        recs = recommendations(CustomerSegment.VIP, RiskLevel.HIGH, 120)
        assert recs == [REC_VIP, REC_REVIEW, REC_WIN_BACK]

    def test_targeted_offer_between_30_and_90_days(self):
        assert recommendations(CustomerSegment.RETURNING, RiskLevel.LOW, 31) == [REC_TARGETED]
        assert recommendations(CustomerSegment.RETURNING, RiskLevel.LOW, 30) == []
        assert recommendations(CustomerSegment.RETURNING, RiskLevel.LOW, 90) == [REC_TARGETED]

    def test_no_orders_skips_inactivity_rules(self):
        assert recommendations(CustomerSegment.NEW, RiskLevel.LOW, None) == [REC_WELCOME]


class TestChurnAndEngagement:
    def test_churn_thresholds(self):
        assert churn_risk(60) == RiskLevel.LOW
        assert churn_risk(61) == RiskLevel.MEDIUM
        assert churn_risk(121) == RiskLevel.HIGH

    def test_churn_falls_back_to_registration(self):
        customer = make_customer(registered_days_ago=200)
        assert churn_risk_for(customer, None, NOW) == RiskLevel.HIGH
        assert churn_risk_for(customer, NOW - timedelta(days=10), NOW) == RiskLevel.LOW

    def test_days_since_floors(self):
        assert days_since(NOW - timedelta(days=2, hours=23), NOW) == 2
        assert days_since(None, NOW) is None

    def test_fully_engaged_customer(self):
        customer = make_customer(last_login_at=NOW - timedelta(days=1))
        score = engagement_score(customer, total_orders=25, last_order_date=NOW - timedelta(days=3), now=NOW)
        assert score == 100

    def test_dormant_customer_scores_contact_only(self):
        customer = make_customer(phone=None)
        assert engagement_score(customer, total_orders=0, last_order_date=None, now=NOW) == 6
