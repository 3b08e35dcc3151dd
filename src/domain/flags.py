"""
Review flags shared by orders, customers and products.

Flags are appended, never removed. Resolving marks the flag and records who
resolved it.
"""

from datetime import datetime
from typing import Dict, Optional, Tuple, TypeVar

from src.domain.errors import InvariantViolation
from src.domain.models import (
    Customer,
    CustomerStatus,
    Flag,
    Order,
    OrderStatus,
    Product,
    ProductStatus,
    Severity,
    utcnow,
)

Flaggable = TypeVar("Flaggable", Order, Customer, Product)


# Status transitions that attach a flag automatically: status -> (flag type, severity)
CUSTOMER_STATUS_FLAGS: Dict[CustomerStatus, Tuple[str, Severity]] = {
    CustomerStatus.SUSPENDED: ("manual_review", Severity.MEDIUM),
    CustomerStatus.BANNED: ("policy_violation", Severity.HIGH),
}

PRODUCT_STATUS_FLAGS: Dict[ProductStatus, Tuple[str, Severity]] = {
    ProductStatus.INACTIVE: ("manual_review", Severity.MEDIUM),
    ProductStatus.DISCONTINUED: ("discontinued", Severity.HIGH),
}

ORDER_STATUS_FLAGS: Dict[OrderStatus, Tuple[str, Severity]] = {
    OrderStatus.CANCELLED: ("cancellation", Severity.MEDIUM),
}


def default_flag_reason(entity_label: str, status: str) -> str:
    return f"{entity_label} {status} by admin (bulk operation)"


def add_flag(
    entity: Flaggable,
    flag_type: str,
    reason: str,
    severity: Severity = Severity.MEDIUM,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Flaggable:
    """Return a copy of `entity` with one more unresolved flag"""
    now = now or utcnow()
    flag = Flag(
        type=flag_type,
        severity=severity,
        reason=reason,
        created_by=actor,
        created_at=now,
    )
    return entity.model_copy(
        update={
            "flags": [*entity.flags, flag],
            "updated_by": actor,
            "updated_at": now,
        }
    )


def resolve_flag(
    entity: Flaggable,
    index: int,
    actor: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Flaggable:
    """Return a copy of `entity` with flag `index` marked resolved"""
    if index < 0 or index >= len(entity.flags):
        raise InvariantViolation(
            f"Flag index {index} out of range ({len(entity.flags)} flags)",
            {"index": index},
        )
    current = entity.flags[index]
    if current.resolved:
        raise InvariantViolation(f"Flag {index} is already resolved", {"index": index})

    now = now or utcnow()
    flags = list(entity.flags)
    flags[index] = current.model_copy(
        update={
            "resolved": True,
            "resolved_by": actor,
            "resolved_at": now,
            "resolution_notes": notes,
        }
    )
    return entity.model_copy(update={"flags": flags, "updated_by": actor, "updated_at": now})


def open_flags(entity: Flaggable) -> int:
    return sum(1 for flag in entity.flags if not flag.resolved)
