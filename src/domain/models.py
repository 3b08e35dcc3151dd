"""
Domain Records

Pydantic models for the records the back-office reads and mutates:
- Order (line items, amounts, payment, shipping, flags, refund)
- Customer (contact, denormalized totals, derived segmentation)
- Product (pricing, inventory, analytics counters)
- AuditLogEntry (immutable administrative trail)

All timestamps are naive UTC. Aware values coming from a source are
converted on validation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

# Currency rounding tolerance for amount invariants
AMOUNT_TOLERANCE = 0.01


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# =============================================================================
# ENUMERATIONS
# =============================================================================

class OrderStatus(str, Enum):
    """Order status enumeration"""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment status enumeration"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Payment method enumeration"""
    COD = "cod"
    ONLINE = "online"
    UPI = "upi"
    CARD = "card"
    NET_BANKING = "net_banking"


class CustomerStatus(str, Enum):
    """Customer account status"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    BANNED = "banned"


class CustomerSegment(str, Enum):
    """Customer segment enumeration"""
    NEW = "new"
    RETURNING = "returning"
    LOYAL = "loyal"
    VIP = "vip"
    AT_RISK = "at_risk"


class RiskLevel(str, Enum):
    """Risk level used for order risk and churn risk"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProductStatus(str, Enum):
    """Product lifecycle status"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    DISCONTINUED = "discontinued"
    OUT_OF_STOCK = "out_of_stock"
    PENDING_APPROVAL = "pending_approval"


class Severity(str, Enum):
    """Severity for flags and audit entries"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EntityType(str, Enum):
    """Entity types the bulk executor can target"""
    ORDER = "order"
    CUSTOMER = "customer"
    PRODUCT = "product"


# =============================================================================
# SHARED PARTS
# =============================================================================

class _Record(BaseModel):
    """Common config: naive UTC timestamps everywhere"""

    @field_validator("*", mode="before")
    @classmethod
    def _normalize_datetimes(cls, v: Any) -> Any:
        return as_naive_utc(v)


class Flag(_Record):
    """Review marker attached to an order, customer or product"""
    type: str
    severity: Severity = Severity.MEDIUM
    reason: str
    resolved: bool = False
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


# =============================================================================
# ORDERS
# =============================================================================

class OrderItem(BaseModel):
    """Order line with product snapshots taken at purchase time"""
    product_id: str
    name: str
    sku: str
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    category: str = "uncategorized"

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.unit_price, 2)


class ShippingAddress(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    country: str = "India"


class RefundInfo(_Record):
    amount: float = Field(gt=0)
    reason: Optional[str] = None
    refund_type: Literal["full", "partial"] = "full"
    processed_by: Optional[str] = None
    processed_at: datetime = Field(default_factory=utcnow)


class Order(_Record):
    """
    Order record.

    `final_amount` is derived from the other amounts when a source omits it
    and must agree with them (within rounding) when present.
    """
    order_id: str
    customer_id: str
    items: List[OrderItem] = Field(default_factory=list)
    subtotal: float = Field(ge=0)
    tax_amount: float = Field(default=0.0, ge=0)
    shipping_charges: float = Field(default=0.0, ge=0)
    discount: float = Field(default=0.0, ge=0)
    final_amount: float
    payment_method: PaymentMethod = PaymentMethod.COD
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.PENDING
    order_date: datetime
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
    flags: List[Flag] = Field(default_factory=list)
    refund_info: Optional[RefundInfo] = None
    status_reason: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def fill_final_amount(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("final_amount") is None:
            data = dict(data)
            data["final_amount"] = round(
                float(data.get("subtotal") or 0)
                + float(data.get("tax_amount") or 0)
                + float(data.get("shipping_charges") or 0)
                - float(data.get("discount") or 0),
                2,
            )
        return data

    @model_validator(mode="after")
    def check_final_amount(self) -> "Order":
        expected = self.subtotal + self.tax_amount + self.shipping_charges - self.discount
        if abs(self.final_amount - expected) > AMOUNT_TOLERANCE:
            raise ValueError(
                f"final_amount {self.final_amount:.2f} does not match "
                f"subtotal + tax + shipping - discount = {expected:.2f}"
            )
        return self

    @property
    def is_revenue(self) -> bool:
        """Counts toward revenue: paid, or fulfilled"""
        return (
            self.payment_status == PaymentStatus.PAID
            or self.status in (OrderStatus.COMPLETED, OrderStatus.DELIVERED)
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# =============================================================================
# CUSTOMERS
# =============================================================================

class Customer(_Record):
    """Customer record with denormalized totals and derived scores"""
    customer_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    registration_date: datetime
    last_login_at: Optional[datetime] = None
    total_orders: int = Field(default=0, ge=0)
    total_spent: float = Field(default=0.0, ge=0)
    last_order_date: Optional[datetime] = None
    status: CustomerStatus = CustomerStatus.ACTIVE
    segmentation: CustomerSegment = CustomerSegment.NEW
    engagement_score: int = Field(default=0, ge=0, le=100)
    churn_risk: RiskLevel = RiskLevel.LOW
    flags: List[Flag] = Field(default_factory=list)
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# =============================================================================
# PRODUCTS
# =============================================================================

class Pricing(BaseModel):
    base_price: float = Field(ge=0)
    sale_price: Optional[float] = Field(default=None, ge=0)
    tax_rate: float = Field(default=0.0, ge=0, le=100)

    @property
    def effective_price(self) -> float:
        return self.sale_price if self.sale_price is not None else self.base_price


class Inventory(BaseModel):
    stock: int = Field(default=0, ge=0)
    reserved: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=10, ge=0)

    @model_validator(mode="after")
    def check_reserved(self) -> "Inventory":
        if self.reserved > self.stock:
            raise ValueError(f"reserved ({self.reserved}) exceeds stock ({self.stock})")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def available(self) -> int:
        return self.stock - self.reserved

    @property
    def is_low_stock(self) -> bool:
        return self.available <= self.low_stock_threshold


class ProductAnalytics(_Record):
    views: int = Field(default=0, ge=0)
    purchases: int = Field(default=0, ge=0)
    revenue: float = Field(default=0.0, ge=0)
    last_sold_at: Optional[datetime] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def conversion_rate(self) -> float:
        if self.views == 0:
            return 0.0
        return round(self.purchases / self.views, 4)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def popularity_score(self) -> int:
        return self.popularity(utcnow())

    def popularity(self, now: datetime) -> int:
        """
        Weighted popularity on a 0-100 scale.

        views up to 30 (1,000 views saturate), purchases up to 30 (100
        purchases saturate), revenue up to 30 (100,000 saturates), and up to
        10 for recency of the last sale, decaying one point per 30 days.
        """
        view_score = min(30.0, self.views / 1000 * 30)
        purchase_score = min(30.0, self.purchases / 100 * 30)
        revenue_score = min(30.0, self.revenue / 100000 * 30)
        if self.last_sold_at is not None:
            days_since_sold = max(0, (now - self.last_sold_at).days)
        else:
            days_since_sold = 365
        recency_score = max(0.0, 10 - days_since_sold / 30)
        return min(100, round(view_score + purchase_score + revenue_score + recency_score))


class Product(_Record):
    """Catalog product keyed by SKU"""
    sku: str
    name: str
    category: str
    subcategory: Optional[str] = None
    pricing: Pricing
    inventory: Inventory = Field(default_factory=Inventory)
    analytics: ProductAnalytics = Field(default_factory=ProductAnalytics)
    flags: List[Flag] = Field(default_factory=list)
    status: ProductStatus = ProductStatus.ACTIVE
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# =============================================================================
# AUDIT
# =============================================================================

class AuditOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class AuditLogEntry(_Record):
    """Append-only record of one administrative action"""
    model_config = ConfigDict(frozen=True)

    actor_id: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    changes: Dict[str, Any] = Field(default_factory=dict)
    severity: Severity = Severity.LOW
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    bulk: bool = False
    created_at: datetime = Field(default_factory=utcnow)
