"""
E-Commerce Back-Office
Domain Module - records, errors and lifecycle rules
"""
from .errors import (
    BackofficeError,
    InvariantViolation,
    NotFoundError,
    SourceUnavailableError,
    ValidationError,
)
from .models import (
    AuditLogEntry,
    AuditOutcome,
    Customer,
    CustomerSegment,
    CustomerStatus,
    EntityType,
    Flag,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    ProductStatus,
    RiskLevel,
    Severity,
    utcnow,
)

__all__ = [
    "BackofficeError",
    "InvariantViolation",
    "NotFoundError",
    "SourceUnavailableError",
    "ValidationError",
    "AuditLogEntry",
    "AuditOutcome",
    "Customer",
    "CustomerSegment",
    "CustomerStatus",
    "EntityType",
    "Flag",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
    "ProductStatus",
    "RiskLevel",
    "Severity",
    "utcnow",
]
