"""
Order lifecycle rules.

    pending -> processing -> shipped -> delivered -> completed
    shipped -> completed
    pending/processing -> cancelled

Cancellation is only possible before shipping. A refund moves payment to
`refunded` and the order to `cancelled` in the same copy.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional

from src.domain.errors import InvariantViolation
from src.domain.flags import ORDER_STATUS_FLAGS, add_flag
from src.domain.models import (
    AMOUNT_TOLERANCE,
    Order,
    OrderStatus,
    PaymentStatus,
    RefundInfo,
    utcnow,
)

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Statuses from which a cancel request is rejected
NON_CANCELLABLE: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
})

COMPLETION_STATUSES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def is_completion(before: OrderStatus, after: OrderStatus) -> bool:
    """True when an order enters delivered/completed from outside that set"""
    return after in COMPLETION_STATUSES and before not in COMPLETION_STATUSES


def change_status(
    order: Order,
    target: OrderStatus,
    actor: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Move an order along the transition table, flagging cancellations"""
    if target == OrderStatus.CANCELLED:
        return cancel_order(order, actor=actor, reason=reason, now=now)

    if not can_transition(order.status, target):
        raise InvariantViolation(
            f"Order {order.order_id} cannot move from {order.status.value} to {target.value}",
            {"from": order.status.value, "to": target.value},
        )

    now = now or utcnow()
    return order.model_copy(
        update={
            "status": target,
            "status_reason": reason,
            "updated_by": actor,
            "updated_at": now,
        }
    )


def cancel_order(
    order: Order,
    actor: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    if order.status in NON_CANCELLABLE:
        raise InvariantViolation(
            f"Order {order.order_id} cannot be cancelled at this stage ({order.status.value})",
            {"status": order.status.value},
        )

    now = now or utcnow()
    reason = reason or "Order cancelled by admin"
    cancelled = order.model_copy(
        update={
            "status": OrderStatus.CANCELLED,
            "status_reason": reason,
            "updated_by": actor,
            "updated_at": now,
        }
    )
    flag_type, severity = ORDER_STATUS_FLAGS[OrderStatus.CANCELLED]
    return add_flag(cancelled, flag_type, reason, severity=severity, actor=actor, now=now)


def refund_order(
    order: Order,
    amount: Optional[float] = None,
    actor: Optional[str] = None,
    reason: Optional[str] = None,
    refund_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Refund a paid order.

    Args:
        amount: Refund amount, defaults to the order's final amount
        refund_type: "full" or "partial"; inferred from the amount when omitted

    Raises:
        InvariantViolation: order not paid, or amount outside (0, final_amount]
    """
    if order.payment_status != PaymentStatus.PAID:
        raise InvariantViolation(
            f"Order {order.order_id} is not eligible for refund (payment {order.payment_status.value})",
            {"payment_status": order.payment_status.value},
        )

    if amount is None:
        amount = order.final_amount
    if amount <= 0:
        raise InvariantViolation(f"Refund amount must be positive, got {amount}", {"amount": amount})
    if amount > order.final_amount + AMOUNT_TOLERANCE:
        raise InvariantViolation(
            f"Refund amount {amount:.2f} exceeds order total {order.final_amount:.2f}",
            {"amount": amount, "final_amount": order.final_amount},
        )

    if refund_type is None:
        refund_type = "full" if amount >= order.final_amount - AMOUNT_TOLERANCE else "partial"

    now = now or utcnow()
    refund = RefundInfo(
        amount=round(amount, 2),
        reason=reason,
        refund_type=refund_type,
        processed_by=actor,
        processed_at=now,
    )
    # Both statuses change in the same copy
    return order.model_copy(
        update={
            "payment_status": PaymentStatus.REFUNDED,
            "status": OrderStatus.CANCELLED,
            "refund_info": refund,
            "status_reason": reason,
            "updated_by": actor,
            "updated_at": now,
        }
    )
