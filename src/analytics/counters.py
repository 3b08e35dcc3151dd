"""
Denormalized counter maintenance.

Stored customer totals (`total_orders`, `total_spent`) count the customer's
non-cancelled orders. They move when an order is placed or cancelled; a
refund cancels the order, so it counts as a cancellation. Product analytics
counters count units sold: they move when an order completes and move back
when a completed order is refunded.

Two disciplines keep the customer totals, both producing the same values
from a consistent starting point:

- recompute (default): rebuild the customer's totals and derived scores from
  their orders on every event. Slower, always correct, repairs drift.
- increment: apply atomic deltas through the source's increment primitives.
  Concurrent events for the same customer or product never lose updates
  because the store applies `x = x + delta`.

`last_order_date` is the latest placed order's date and a cancellation does
not move it back.
"""

from typing import Callable, Optional

import structlog

from src.analytics.aggregator import build_insights
from src.domain.models import Order, OrderStatus, utcnow
from src.gateway.base import OrderFilter, RecordSource

logger = structlog.get_logger(__name__)

MODES = ("recompute", "increment")


class CounterService:
    """
    Example:
        counters = CounterService(gateway.writer, mode="increment")
        await counters.record_order_completion(order)
    """

    def __init__(self, source: RecordSource, mode: str = "recompute", clock: Callable = utcnow):
        if mode not in MODES:
            raise ValueError(f"Counter mode must be one of {MODES}, got {mode!r}")
        self.source = source
        self.mode = mode
        self.clock = clock

    async def record_order_placed(self, order: Order) -> None:
        """A new order joins the customer's totals; called by the order-creation path"""
        await self._customer_delta(order, sign=1)

    async def record_order_completion(self, order: Order) -> None:
        """Count the order's units as sold"""
        if self.mode == "recompute":
            await self._recompute_for(order)
        await self._product_delta(order, sign=1)

    async def record_order_cancellation(self, order: Order, was_completed: bool = False) -> None:
        """
        Take a cancelled or refunded order out of the customer's totals.

        Args:
            was_completed: the order had completed, so its units come off the
                product counters too
        """
        await self._customer_delta(order, sign=-1)
        if was_completed:
            await self._product_delta(order, sign=-1)

    async def _customer_delta(self, order: Order, sign: int) -> None:
        if self.mode == "recompute":
            await self._recompute_for(order)
            return

        await self.source.increment_customer_totals(
            order.customer_id,
            orders=sign,
            spent=round(sign * order.final_amount, 2),
            last_order_date=order.order_date if sign > 0 else None,
        )
        logger.info("Customer totals incremented", order_id=order.order_id, customer_id=order.customer_id, delta=sign)

    async def _product_delta(self, order: Order, sign: int) -> None:
        # Product counters have no order log to rebuild from cheaply
        for item in order.items:
            await self.source.increment_product_counters(
                item.sku,
                purchases=sign * item.quantity,
                revenue=round(sign * item.quantity * item.unit_price, 2),
                sold_at=(order.updated_at or order.order_date) if sign > 0 else None,
            )

    async def _recompute_for(self, order: Order) -> None:
        if await self.recompute_customer(order.customer_id) is None:
            logger.warning("Order for unknown customer", order_id=order.order_id, customer_id=order.customer_id)

    async def recompute_customer(self, customer_id: str) -> Optional[dict]:
        """
        Rebuild one customer's totals and derived scores from their orders.

        Returns:
            The recomputed values, or None when the customer does not exist
        """
        customer = await self.source.get_customer(customer_id)
        if customer is None:
            return None

        orders = await self.source.query_orders(OrderFilter(customer_id=customer_id))
        insights = build_insights(customer, orders, self.clock())

        last_order_date = max((o.order_date for o in orders if o.status != OrderStatus.CANCELLED), default=None)
        if customer.last_order_date is not None and (
            last_order_date is None or customer.last_order_date > last_order_date
        ):
            last_order_date = customer.last_order_date

        values = {
            "total_orders": insights.total_orders,
            "total_spent": insights.total_spent,
            "last_order_date": last_order_date,
            "segmentation": insights.stored_segmentation,
            "engagement_score": insights.engagement_score,
            "churn_risk": insights.churn_risk,
        }
        await self.source.save_customer(customer.model_copy(update=values))
        logger.info(
            "Customer totals recomputed",
            customer_id=customer_id,
            total_orders=insights.total_orders,
            total_spent=insights.total_spent,
        )
        return values
