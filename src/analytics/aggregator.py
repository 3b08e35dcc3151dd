"""
Metrics & Segmentation Aggregator

Derives KPIs, daily series, breakdowns, customer insights and anomaly counts
from raw orders/customers/products pulled through the record store gateway.

Read-path contract:
- Every public operation returns a `SourceResult`; source failures never
  raise past this class. Callers check `degraded`.
- Bad input (window length, dimension) raises ValidationError before any
  source is touched. An unknown customer raises NotFoundError.
- Revenue orders (paid, or delivered/completed) are the population for KPIs,
  series and breakdowns.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import polars as pl
import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.analytics.anomaly_detector import SeriesAnomalyDetector, count_suspicious
from src.analytics.calculations import growth_rate, safe_average
from src.analytics.schemas import (
    BreakdownRow,
    CustomerInsights,
    Dashboard,
    GrowthRates,
    KPISummary,
    OrderAnalytics,
    SalesAnomaly,
    SeriesPoint,
    TopCustomer,
    TopProduct,
)
from src.analytics.segmentation import (
    churn_risk_for,
    days_since,
    engagement_score,
    recommendations,
    risk_level,
    risk_score,
    segment_for,
    stored_segmentation,
)
from src.config.settings import Settings
from src.domain.errors import NotFoundError, ValidationError
from src.domain.models import (
    Customer,
    Order,
    OrderStatus,
    PaymentStatus,
    utcnow,
)
from src.domain.windows import TimeWindow, calculate_windows, series_days, series_window, validate_days
from src.gateway.base import CustomerFilter, OrderFilter, RecordSource
from src.gateway.fallback import RecordStoreGateway, SourceKind, SourceResult
from src.serving.cache import MetricsCache

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DIMENSIONS = ("category", "payment_method", "geography")
DIMENSION_ALIASES = {"paymentMethod": "payment_method", "payment": "payment_method", "geo": "geography"}
GEO_LEVELS = ("state", "city", "pincode")
UNKNOWN_KEY = "unknown"

_BREAKDOWN_SCHEMA = {"key": pl.Utf8, "count": pl.Int64, "revenue": pl.Float64}


# =============================================================================
# PURE COMPUTATIONS
# =============================================================================

def revenue_orders(orders: List[Order]) -> List[Order]:
    return [order for order in orders if order.is_revenue]


def compute_kpis(
    days: int,
    orders: List[Order],
    customers: List[Customer],
    current: TimeWindow,
    previous: TimeWindow,
) -> KPISummary:
    """KPIs for `current` with growth against `previous`"""

    def block(window: TimeWindow) -> Tuple[float, int, int, float]:
        in_window = [o for o in orders if o.is_revenue and window.contains(o.order_date)]
        revenue = round(sum(o.final_amount for o in in_window), 2)
        count = len(in_window)
        new_customers = sum(1 for c in customers if window.contains(c.registration_date))
        return revenue, count, new_customers, safe_average(revenue, count)

    revenue, count, new_customers, aov = block(current)
    prev_revenue, prev_count, prev_new, prev_aov = block(previous)

    return KPISummary(
        days=days,
        revenue=revenue,
        orders=count,
        new_customers=new_customers,
        avg_order_value=aov,
        growth=GrowthRates(
            revenue=growth_rate(prev_revenue, revenue),
            orders=growth_rate(prev_count, count),
            new_customers=growth_rate(prev_new, new_customers),
            avg_order_value=growth_rate(prev_aov, aov),
        ),
    )


def compute_series(days: int, orders: List[Order], now: datetime) -> List[SeriesPoint]:
    """One point per calendar day, zero-filled"""
    day_list = series_days(days, now)
    totals: Dict[Any, List[float]] = {day: [0, 0.0] for day in day_list}
    for order in orders:
        if not order.is_revenue:
            continue
        bucket = totals.get(order.order_date.date())
        if bucket is None:
            continue
        bucket[0] += 1
        bucket[1] += order.final_amount

    return [
        SeriesPoint(date=day, order_count=int(totals[day][0]), revenue=round(totals[day][1], 2))
        for day in day_list
    ]


def group_rows(rows: List[Tuple[str, int, float]]) -> List[BreakdownRow]:
    """
    Sum (key, count, revenue) rows per key.

    Sorted by revenue descending, ties broken by key ascending.
    """
    if not rows:
        return []
    df = pl.DataFrame(rows, schema=_BREAKDOWN_SCHEMA, orient="row")
    grouped = (
        df.group_by("key")
        .agg(
            pl.col("count").sum().alias("count"),
            pl.col("revenue").sum().round(2).alias("revenue"),
        )
        .sort(["revenue", "key"], descending=[True, False])
    )
    return [BreakdownRow(**row) for row in grouped.iter_rows(named=True)]


def breakdown_rows(orders: List[Order], dimension: str, level: str = "state") -> List[Tuple[str, int, float]]:
    rows: List[Tuple[str, int, float]] = []
    for order in revenue_orders(orders):
        if dimension == "category":
            # Units and line revenue per category snapshot
            for item in order.items:
                rows.append((item.category or UNKNOWN_KEY, item.quantity, item.quantity * item.unit_price))
        elif dimension == "payment_method":
            rows.append((order.payment_method.value, 1, order.final_amount))
        else:
            key = getattr(order.shipping_address, level) or UNKNOWN_KEY
            rows.append((str(key), 1, order.final_amount))
    return rows


def compute_breakdown(orders: List[Order], dimension: str, level: str = "state") -> List[BreakdownRow]:
    return group_rows(breakdown_rows(orders, dimension, level))


def compute_top_products(orders: List[Order], limit: int) -> List[TopProduct]:
    lines = [
        (item.sku, item.name, item.category or UNKNOWN_KEY, item.quantity, item.quantity * item.unit_price)
        for order in revenue_orders(orders)
        for item in order.items
    ]
    if not lines:
        return []
    df = pl.DataFrame(
        lines,
        schema={"sku": pl.Utf8, "name": pl.Utf8, "category": pl.Utf8, "units": pl.Int64, "revenue": pl.Float64},
        orient="row",
    )
    top = (
        df.group_by("sku")
        .agg(
            pl.col("name").first(),
            pl.col("category").first(),
            pl.col("units").sum(),
            pl.col("revenue").sum().round(2),
        )
        .sort(["units", "revenue", "sku"], descending=[True, True, False])
        .head(limit)
    )
    return [
        TopProduct(
            sku=row["sku"],
            name=row["name"],
            category=row["category"],
            units_sold=row["units"],
            revenue=row["revenue"],
        )
        for row in top.iter_rows(named=True)
    ]


def compute_order_analytics(
    days: int,
    orders: List[Order],
    high_value_threshold: float,
    top_customers_limit: int,
) -> OrderAnalytics:
    status_counts = {status.value: 0 for status in OrderStatus}
    payment_counts = {status.value: 0 for status in PaymentStatus}
    for order in orders:
        status_counts[order.status.value] += 1
        payment_counts[order.payment_status.value] += 1

    spend: Dict[str, List[float]] = defaultdict(lambda: [0, 0.0])
    for order in revenue_orders(orders):
        spend[order.customer_id][0] += 1
        spend[order.customer_id][1] += order.final_amount
    ranked = sorted(spend.items(), key=lambda item: (-item[1][1], item[0]))[:top_customers_limit]

    return OrderAnalytics(
        days=days,
        total_orders=len(orders),
        status_breakdown=status_counts,
        payment_status_breakdown=payment_counts,
        payment_methods=compute_breakdown(orders, "payment_method"),
        flagged_orders=count_suspicious(orders, high_value_threshold),
        top_customers=[
            TopCustomer(customer_id=customer_id, orders=int(totals[0]), total_spent=round(totals[1], 2))
            for customer_id, totals in ranked
        ],
    )


def build_insights(customer: Customer, orders: List[Order], now: datetime) -> CustomerInsights:
    """
    Segment, risk and recommendations from the customer's own orders.

    Totals are recomputed from non-cancelled orders rather than read from the
    denormalized customer record. Risk covers every order.
    """
    kept = [order for order in orders if order.status != OrderStatus.CANCELLED]
    total_orders = len(kept)
    total_spent = round(sum(order.final_amount for order in kept), 2)
    segment = segment_for(total_orders, total_spent)

    score = risk_score(orders)
    level = risk_level(score)

    last_order_date = max((order.order_date for order in orders), default=None)
    days_inactive = days_since(last_order_date, now)
    churn = churn_risk_for(customer, last_order_date, now)

    return CustomerInsights(
        customer_id=customer.customer_id,
        segment=segment,
        risk_level=level,
        risk_score=round(score, 2),
        days_since_last_order=days_inactive,
        recommendations=recommendations(segment, level, days_inactive),
        total_orders=total_orders,
        total_spent=total_spent,
        avg_order_value=safe_average(total_spent, total_orders),
        churn_risk=churn,
        engagement_score=engagement_score(customer, total_orders, last_order_date, now),
        stored_segmentation=stored_segmentation(segment, churn),
    )


def normalize_dimension(dimension: str, level: str) -> Tuple[str, str]:
    dimension = DIMENSION_ALIASES.get(dimension, dimension)
    if dimension not in DIMENSIONS:
        raise ValidationError(
            f"Unknown breakdown dimension '{dimension}', expected one of {', '.join(DIMENSIONS)}",
            {"dimension": dimension},
        )
    if level not in GEO_LEVELS:
        raise ValidationError(
            f"Unknown geography level '{level}', expected one of {', '.join(GEO_LEVELS)}",
            {"level": level},
        )
    return dimension, level


# =============================================================================
# AGGREGATOR
# =============================================================================

_KPI_ADAPTER = TypeAdapter(KPISummary)
_SERIES_ADAPTER = TypeAdapter(List[SeriesPoint])
_BREAKDOWN_ADAPTER = TypeAdapter(List[BreakdownRow])
_ORDER_ANALYTICS_ADAPTER = TypeAdapter(OrderAnalytics)
_TOP_PRODUCTS_ADAPTER = TypeAdapter(List[TopProduct])
_ANOMALIES_ADAPTER = TypeAdapter(List[SalesAnomaly])


class MetricsAggregator:
    """
    Metrics layer over the record store gateway.

    Example:
        aggregator = MetricsAggregator(gateway)
        result = await aggregator.get_kpis(30)
        result.data.revenue, result.degraded
    """

    def __init__(
        self,
        gateway: RecordStoreGateway,
        cache: Optional[MetricsCache] = None,
        high_value_threshold: float = 50000.0,
        default_timeout: Optional[float] = None,
        max_days: int = 365,
        z_threshold: float = 3.0,
        pct_change_threshold: float = 50.0,
        top_customers_limit: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.cache = cache
        self.high_value_threshold = high_value_threshold
        self.default_timeout = default_timeout
        self.max_days = max_days
        self.z_threshold = z_threshold
        self.pct_change_threshold = pct_change_threshold
        self.top_customers_limit = top_customers_limit
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        gateway: RecordStoreGateway,
        cache: Optional[MetricsCache] = None,
    ) -> "MetricsAggregator":
        analytics = settings.analytics
        return cls(
            gateway=gateway,
            cache=cache if analytics.cache_enabled else None,
            high_value_threshold=analytics.high_value_threshold,
            default_timeout=analytics.metrics_timeout_seconds,
            max_days=analytics.max_days,
            z_threshold=analytics.anomaly_z_threshold,
            pct_change_threshold=analytics.anomaly_pct_change_threshold,
            top_customers_limit=analytics.top_customers_limit,
        )

    def _days(self, days: int) -> int:
        return validate_days(days, self.max_days)

    async def _execute(
        self,
        metric: str,
        params: Dict[str, Any],
        adapter: TypeAdapter,
        loader: Callable[[RecordSource], Awaitable[T]],
        empty: Callable[[], T],
        timeout: Optional[float] = None,
    ) -> SourceResult[T]:
        """Cache lookup, then the gateway under the whole-call timeout"""
        key = None
        if self.cache is not None and self.cache.enabled:
            key = self.cache.key_for(metric, **params)
            hit = await self.cache.get(key)
            if hit is not None:
                payload, cached_at = hit
                try:
                    data = adapter.validate_python(payload)
                except PydanticValidationError as e:
                    logger.warning("Ignoring stale cache entry", metric=metric, error=str(e))
                else:
                    return SourceResult(data=data, kind=SourceKind.PRIMARY, cached_at=cached_at)

        result = await self._run_bounded(metric, loader, empty, timeout)
        if not result.degraded and key is not None:
            await self.cache.set(key, adapter.dump_python(result.data, mode="json"))
        return result

    async def _run_bounded(
        self,
        metric: str,
        loader: Callable[[RecordSource], Awaitable[T]],
        empty: Callable[[], T],
        timeout: Optional[float] = None,
    ) -> SourceResult[T]:
        """The gateway call under the whole-call timeout; expiry yields the empty result"""
        timeout = timeout if timeout is not None else self.default_timeout
        try:
            if timeout:
                result = await asyncio.wait_for(self.gateway.run(metric, loader, empty), timeout=timeout)
            else:
                result = await self.gateway.run(metric, loader, empty)
        except asyncio.TimeoutError:
            logger.warning("Metrics call timed out", metric=metric, timeout=timeout)
            result = SourceResult(
                data=empty(),
                kind=SourceKind.UNAVAILABLE,
                errors=[f"timed out after {timeout}s"],
            )

        if result.degraded:
            logger.warning(
                "Degraded metrics result",
                metric=metric,
                source=result.kind.value,
                errors=result.errors,
            )
        return result

    # --- KPIs and series ---------------------------------------------------

    async def get_kpis(self, days: int, timeout: Optional[float] = None) -> SourceResult[KPISummary]:
        days = self._days(days)

        async def load(source: RecordSource) -> KPISummary:
            current, previous = calculate_windows(days, self.clock())
            span = TimeWindow(start=previous.start, end=current.end)
            orders = await source.query_orders(OrderFilter(), span)
            customers = await source.query_customers(CustomerFilter(registered_within=span))
            return compute_kpis(days, orders, customers, current, previous)

        return await self._execute(
            "kpis", {"days": days}, _KPI_ADAPTER, load, lambda: KPISummary.empty(days), timeout
        )

    async def get_sales_series(self, days: int, timeout: Optional[float] = None) -> SourceResult[List[SeriesPoint]]:
        days = self._days(days)

        def empty() -> List[SeriesPoint]:
            return compute_series(days, [], self.clock())

        async def load(source: RecordSource) -> List[SeriesPoint]:
            now = self.clock()
            orders = await source.query_orders(OrderFilter(), series_window(days, now))
            return compute_series(days, orders, now)

        return await self._execute("sales_series", {"days": days}, _SERIES_ADAPTER, load, empty, timeout)

    async def get_breakdown(
        self,
        dimension: str,
        days: Optional[int] = None,
        level: str = "state",
        timeout: Optional[float] = None,
    ) -> SourceResult[List[BreakdownRow]]:
        """
        Count and revenue grouped by category, payment method or geography.

        Args:
            dimension: category | payment_method | geography
            days: Lookback, all time when None
            level: Geography level (state, city, pincode)
        """
        dimension, level = normalize_dimension(dimension, level)
        if days is not None:
            days = self._days(days)

        async def load(source: RecordSource) -> List[BreakdownRow]:
            window = calculate_windows(days, self.clock())[0] if days is not None else None
            orders = await source.query_orders(OrderFilter(), window)
            return compute_breakdown(orders, dimension, level)

        params = {"dimension": dimension, "days": days or "all", "level": level}
        return await self._execute("breakdown", params, _BREAKDOWN_ADAPTER, load, list, timeout)

    # --- customers ---------------------------------------------------------

    async def get_customer_insights(
        self, customer_id: str, timeout: Optional[float] = None
    ) -> SourceResult[Optional[CustomerInsights]]:
        """
        Segment, risk and recommendations for one customer.

        Not cached. `data` is None when no source could serve the call
        within the timeout.

        Raises:
            NotFoundError: the serving source has no such customer
        """

        async def load(source: RecordSource) -> CustomerInsights:
            customer = await source.get_customer(customer_id)
            if customer is None:
                raise NotFoundError("customer", customer_id)
            orders = await source.query_orders(OrderFilter(customer_id=customer_id))
            return build_insights(customer, orders, self.clock())

        return await self._run_bounded("customer_insights", load, lambda: None, timeout)

    # --- orders and products -----------------------------------------------

    async def get_order_analytics(self, days: int, timeout: Optional[float] = None) -> SourceResult[OrderAnalytics]:
        days = self._days(days)

        async def load(source: RecordSource) -> OrderAnalytics:
            current, _ = calculate_windows(days, self.clock())
            orders = await source.query_orders(OrderFilter(), current)
            return compute_order_analytics(days, orders, self.high_value_threshold, self.top_customers_limit)

        return await self._execute(
            "order_analytics",
            {"days": days},
            _ORDER_ANALYTICS_ADAPTER,
            load,
            lambda: OrderAnalytics.empty(days),
            timeout,
        )

    async def get_top_products(
        self,
        days: int,
        limit: int = 10,
        timeout: Optional[float] = None,
    ) -> SourceResult[List[TopProduct]]:
        days = self._days(days)
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}", {"limit": limit})

        async def load(source: RecordSource) -> List[TopProduct]:
            current, _ = calculate_windows(days, self.clock())
            orders = await source.query_orders(OrderFilter(), current)
            return compute_top_products(orders, limit)

        return await self._execute(
            "top_products", {"days": days, "limit": limit}, _TOP_PRODUCTS_ADAPTER, load, list, timeout
        )

    async def get_sales_anomalies(self, days: int, timeout: Optional[float] = None) -> SourceResult[List[SalesAnomaly]]:
        """Z-score and day-over-day outliers in daily revenue and order count"""
        days = self._days(days)

        async def load(source: RecordSource) -> List[SalesAnomaly]:
            now = self.clock()
            orders = await source.query_orders(OrderFilter(), series_window(days, now))
            series = compute_series(days, orders, now)
            detector = SeriesAnomalyDetector(
                z_threshold=self.z_threshold,
                pct_change_threshold=self.pct_change_threshold,
            )
            dates = [point.date for point in series]
            detector.add_metric("revenue", dates, [point.revenue for point in series])
            detector.add_metric("order_count", dates, [point.order_count for point in series])
            return [
                SalesAnomaly(
                    metric=found.metric_name,
                    date=found.day,
                    anomaly_type=found.anomaly_type.value,
                    severity=found.severity.value,
                    value=found.value,
                    expected_value=found.expected_value,
                    deviation=found.deviation,
                    message=found.message,
                )
                for found in detector.detect()
            ]

        return await self._execute("sales_anomalies", {"days": days}, _ANOMALIES_ADAPTER, load, list, timeout)

    # --- dashboard ---------------------------------------------------------

    async def get_dashboard(self, days: int, timeout: Optional[float] = None) -> SourceResult[Dashboard]:
        """KPIs, series, category breakdown and top products gathered concurrently"""
        days = self._days(days)
        kpis, series, categories, top_products = await asyncio.gather(
            self.get_kpis(days, timeout=timeout),
            self.get_sales_series(days, timeout=timeout),
            self.get_breakdown("category", days, timeout=timeout),
            self.get_top_products(days, timeout=timeout),
        )
        combined = SourceResult.combine({
            "kpis": kpis,
            "sales_series": series,
            "categories": categories,
            "top_products": top_products,
        })
        return combined.map(lambda parts: Dashboard(days=days, **parts))
