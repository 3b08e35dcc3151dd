"""
Database Models - Primary Record Store

Tables backing the primary source:

- fact_orders: one row per order, line items/flags/refund as JSON
- dim_customers: customer profile plus denormalized totals
- dim_products: catalog, pricing, inventory and analytics counters
- audit_logs: append-only administrative trail

Each table converts to and from its domain record with `to_domain()` /
`from_domain()` so the rest of the code never touches ORM rows.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.domain.models import (
    AuditLogEntry,
    AuditOutcome,
    Customer,
    CustomerSegment,
    CustomerStatus,
    Inventory,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Pricing,
    Product,
    ProductAnalytics,
    ProductStatus,
    RiskLevel,
    Severity,
    ShippingAddress,
)


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum(enum_cls) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=30,
        values_callable=lambda members: [m.value for m in members],
    )


def _money(precision: int = 12) -> Numeric:
    return Numeric(precision, 2, asdecimal=False)


def _dump_list(items) -> List[Dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


# =============================================================================
# ORDERS
# =============================================================================

class FactOrder(Base):
    """
    Order Fact Table

    Grain is one order. Line items are snapshots and stay embedded.
    """
    __tablename__ = "fact_orders"

    order_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)

    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)

    # Measures
    subtotal: Mapped[float] = mapped_column(_money(), nullable=False)
    tax_amount: Mapped[float] = mapped_column(_money(10), default=0)
    shipping_charges: Mapped[float] = mapped_column(_money(10), default=0)
    discount: Mapped[float] = mapped_column(_money(10), default=0)
    final_amount: Mapped[float] = mapped_column(_money(), nullable=False)

    # Status
    payment_method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod), default=PaymentMethod.COD)
    payment_status: Mapped[PaymentStatus] = mapped_column(_enum(PaymentStatus), default=PaymentStatus.PENDING)
    status: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus), default=OrderStatus.PENDING)
    status_reason: Mapped[Optional[str]] = mapped_column(Text)

    order_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Shipping address
    shipping_street: Mapped[Optional[str]] = mapped_column(String(300))
    shipping_city: Mapped[Optional[str]] = mapped_column(String(100))
    shipping_state: Mapped[Optional[str]] = mapped_column(String(100))
    shipping_pincode: Mapped[Optional[str]] = mapped_column(String(20))
    shipping_country: Mapped[Optional[str]] = mapped_column(String(100))

    flags: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)
    refund_info: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)

    # Audit
    updated_by: Mapped[Optional[str]] = mapped_column(String(50))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_fact_orders_customer", "customer_id"),
        Index("ix_fact_orders_date", "order_date"),
        Index("ix_fact_orders_status", "status"),
        Index("ix_fact_orders_payment", "payment_status"),
    )

    def to_domain(self) -> Order:
        return Order.model_validate({
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "items": self.items or [],
            "subtotal": self.subtotal,
            "tax_amount": self.tax_amount or 0,
            "shipping_charges": self.shipping_charges or 0,
            "discount": self.discount or 0,
            "final_amount": self.final_amount,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "status_reason": self.status_reason,
            "order_date": self.order_date,
            "shipping_address": ShippingAddress(
                street=self.shipping_street or "",
                city=self.shipping_city or "",
                state=self.shipping_state or "",
                pincode=self.shipping_pincode or "",
                country=self.shipping_country or "India",
            ),
            "flags": self.flags or [],
            "refund_info": self.refund_info,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        })

    @classmethod
    def column_values(cls, order: Order) -> Dict[str, Any]:
        address = order.shipping_address
        return {
            "order_id": order.order_id,
            "customer_id": order.customer_id,
            "items": _dump_list(order.items),
            "subtotal": order.subtotal,
            "tax_amount": order.tax_amount,
            "shipping_charges": order.shipping_charges,
            "discount": order.discount,
            "final_amount": order.final_amount,
            "payment_method": order.payment_method,
            "payment_status": order.payment_status,
            "status": order.status,
            "status_reason": order.status_reason,
            "order_date": order.order_date,
            "shipping_street": address.street,
            "shipping_city": address.city,
            "shipping_state": address.state,
            "shipping_pincode": address.pincode,
            "shipping_country": address.country,
            "flags": _dump_list(order.flags),
            "refund_info": order.refund_info.model_dump(mode="json") if order.refund_info else None,
            "updated_by": order.updated_by,
            "updated_at": order.updated_at,
            "deleted_at": order.deleted_at,
        }


# =============================================================================
# CUSTOMERS
# =============================================================================

class DimCustomer(Base):
    """
    Customer Dimension Table

    total_orders/total_spent are denormalized; the counter service keeps
    them in step with completed orders.
    """
    __tablename__ = "dim_customers"

    customer_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(30))

    registration_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Denormalized totals
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    total_spent: Mapped[float] = mapped_column(_money(), default=0)
    last_order_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Derived
    status: Mapped[CustomerStatus] = mapped_column(_enum(CustomerStatus), default=CustomerStatus.ACTIVE)
    segmentation: Mapped[CustomerSegment] = mapped_column(_enum(CustomerSegment), default=CustomerSegment.NEW)
    engagement_score: Mapped[int] = mapped_column(Integer, default=0)
    churn_risk: Mapped[RiskLevel] = mapped_column(_enum(RiskLevel), default=RiskLevel.LOW)

    flags: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)

    updated_by: Mapped[Optional[str]] = mapped_column(String(50))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_dim_customers_registration", "registration_date"),
        Index("ix_dim_customers_segment", "segmentation"),
        Index("ix_dim_customers_status", "status"),
    )

    def to_domain(self) -> Customer:
        return Customer.model_validate({
            "customer_id": self.customer_id,
            "name": self.name or "",
            "email": self.email,
            "phone": self.phone,
            "registration_date": self.registration_date,
            "last_login_at": self.last_login_at,
            "total_orders": self.total_orders or 0,
            "total_spent": self.total_spent or 0,
            "last_order_date": self.last_order_date,
            "status": self.status,
            "segmentation": self.segmentation,
            "engagement_score": self.engagement_score or 0,
            "churn_risk": self.churn_risk,
            "flags": self.flags or [],
            "updated_by": self.updated_by,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        })

    @classmethod
    def column_values(cls, customer: Customer) -> Dict[str, Any]:
        values = customer.model_dump(exclude={"flags"})
        values["flags"] = _dump_list(customer.flags)
        return values


# =============================================================================
# PRODUCTS
# =============================================================================

class DimProduct(Base):
    """
    Product Dimension Table

    Pricing, inventory and analytics counters are flattened into columns.
    """
    __tablename__ = "dim_products"

    sku: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    subcategory: Mapped[Optional[str]] = mapped_column(String(100))

    # Pricing
    base_price: Mapped[float] = mapped_column(_money(10), nullable=False)
    sale_price: Mapped[Optional[float]] = mapped_column(_money(10))
    tax_rate: Mapped[float] = mapped_column(Numeric(5, 2, asdecimal=False), default=0)

    # Inventory
    stock: Mapped[int] = mapped_column(Integer, default=0)
    reserved: Mapped[int] = mapped_column(Integer, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=10)

    # Analytics counters
    views: Mapped[int] = mapped_column(Integer, default=0)
    purchases: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(_money(14), default=0)
    last_sold_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    flags: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)
    status: Mapped[ProductStatus] = mapped_column(_enum(ProductStatus), default=ProductStatus.ACTIVE)

    updated_by: Mapped[Optional[str]] = mapped_column(String(50))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_dim_products_category", "category"),
        Index("ix_dim_products_status", "status"),
    )

    def to_domain(self) -> Product:
        return Product(
            sku=self.sku,
            name=self.name,
            category=self.category,
            subcategory=self.subcategory,
            pricing=Pricing(
                base_price=self.base_price,
                sale_price=self.sale_price,
                tax_rate=self.tax_rate or 0,
            ),
            inventory=Inventory(
                stock=self.stock or 0,
                reserved=self.reserved or 0,
                low_stock_threshold=self.low_stock_threshold if self.low_stock_threshold is not None else 10,
            ),
            analytics=ProductAnalytics(
                views=self.views or 0,
                purchases=self.purchases or 0,
                revenue=self.revenue or 0,
                last_sold_at=self.last_sold_at,
            ),
            flags=self.flags or [],
            status=self.status,
            updated_by=self.updated_by,
            updated_at=self.updated_at,
            deleted_at=self.deleted_at,
        )

    @classmethod
    def column_values(cls, product: Product) -> Dict[str, Any]:
        return {
            "sku": product.sku,
            "name": product.name,
            "category": product.category,
            "subcategory": product.subcategory,
            "base_price": product.pricing.base_price,
            "sale_price": product.pricing.sale_price,
            "tax_rate": product.pricing.tax_rate,
            "stock": product.inventory.stock,
            "reserved": product.inventory.reserved,
            "low_stock_threshold": product.inventory.low_stock_threshold,
            "views": product.analytics.views,
            "purchases": product.analytics.purchases,
            "revenue": product.analytics.revenue,
            "last_sold_at": product.analytics.last_sold_at,
            "flags": _dump_list(product.flags),
            "status": product.status,
            "updated_by": product.updated_by,
            "updated_at": product.updated_at,
            "deleted_at": product.deleted_at,
        }


# =============================================================================
# AUDIT
# =============================================================================

class AuditLog(Base):
    """
    Audit Log Table

    Rows are inserted only. Nothing in the application updates or deletes them.
    """
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(30), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(50))
    changes: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict)
    severity: Mapped[Severity] = mapped_column(_enum(Severity), default=Severity.LOW)
    outcome: Mapped[AuditOutcome] = mapped_column(_enum(AuditOutcome), default=AuditOutcome.SUCCESS)
    bulk: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        Index("ix_audit_logs_actor", "actor_id"),
        Index("ix_audit_logs_created", "created_at"),
    )

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLog":
        return cls(
            actor_id=entry.actor_id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            changes=entry.model_dump(mode="json", include={"changes"})["changes"],
            severity=entry.severity,
            outcome=entry.outcome,
            bulk=entry.bulk,
            created_at=entry.created_at,
        )

    def to_entry(self) -> AuditLogEntry:
        return AuditLogEntry(
            actor_id=self.actor_id,
            action=self.action,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            changes=self.changes or {},
            severity=self.severity,
            outcome=self.outcome,
            bulk=self.bulk,
            created_at=self.created_at,
        )
