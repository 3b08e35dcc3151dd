"""
Record factories and in-memory test doubles.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from src.bulk.audit import AuditSink
from src.domain.models import (
    AuditLogEntry,
    Customer,
    Inventory,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Pricing,
    Product,
    ProductAnalytics,
    ShippingAddress,
)
from src.domain.windows import TimeWindow
from src.gateway.base import CustomerFilter, OrderFilter, ProductFilter, RecordSource

NOW = datetime(2026, 3, 15, 12, 0, 0)


def fixed_clock() -> datetime:
    return NOW


def make_order(
    order_id: str = "O1",
    customer_id: str = "C1",
    amount: float = 1000.0,
    status: OrderStatus = OrderStatus.DELIVERED,
    payment_status: PaymentStatus = PaymentStatus.PAID,
    payment_method: PaymentMethod = PaymentMethod.UPI,
    order_date: Optional[datetime] = None,
    days_ago: float = 1,
    items: Optional[List[OrderItem]] = None,
    city: str = "Mumbai",
    state: str = "Maharashtra",
    pincode: str = "400001",
    **overrides,
) -> Order:
    if items is None:
        items = [OrderItem(product_id="P1", name="Phone", sku="SKU-1", quantity=1, unit_price=amount, category="electronics")]
    return Order(
        order_id=order_id,
        customer_id=customer_id,
        items=items,
        subtotal=amount,
        final_amount=amount,
        status=status,
        payment_status=payment_status,
        payment_method=payment_method,
        order_date=order_date or NOW - timedelta(days=days_ago),
        shipping_address=ShippingAddress(street="1 Main Rd", city=city, state=state, pincode=pincode),
        **overrides,
    )


def make_customer(
    customer_id: str = "C1",
    registered_days_ago: float = 200,
    **overrides,
) -> Customer:
    values = {
        "customer_id": customer_id,
        "name": "Asha Rao",
        "email": f"{customer_id.lower()}@example.com",
        "phone": "9000000000",
        "registration_date": NOW - timedelta(days=registered_days_ago),
    }
    values.update(overrides)
    return Customer(**values)


def make_product(sku: str = "SKU-1", **overrides) -> Product:
    values = {
        "sku": sku,
        "name": f"Product {sku}",
        "category": "electronics",
        "pricing": Pricing(base_price=1000.0, tax_rate=18.0),
        "inventory": Inventory(stock=50, reserved=5),
        "analytics": ProductAnalytics(views=100, purchases=10, revenue=10000.0),
    }
    values.update(overrides)
    return Product(**values)


class InMemoryRecordSource(RecordSource):
    """Dict-backed record source; `fail_writes_for` ids raise on save"""

    def __init__(
        self,
        name: str = "primary",
        orders: Iterable[Order] = (),
        customers: Iterable[Customer] = (),
        products: Iterable[Product] = (),
        read_only: bool = False,
    ):
        self.name = name
        self.read_only = read_only
        self.orders: Dict[str, Order] = {o.order_id: o for o in orders}
        self.customers: Dict[str, Customer] = {c.customer_id: c for c in customers}
        self.products: Dict[str, Product] = {p.sku: p for p in products}
        self.fail_writes_for: Set[str] = set()
        self.reads = 0

    async def query_orders(self, filter: Optional[OrderFilter] = None, window: Optional[TimeWindow] = None) -> List[Order]:
        self.reads += 1
        filter = filter or OrderFilter()
        matched = [o for o in self.orders.values() if filter.matches(o, window)]
        return sorted(matched, key=lambda o: (o.order_date, o.order_id))

    async def query_customers(self, filter: Optional[CustomerFilter] = None) -> List[Customer]:
        self.reads += 1
        filter = filter or CustomerFilter()
        return sorted((c for c in self.customers.values() if filter.matches(c)), key=lambda c: c.customer_id)

    async def query_products(self, filter: Optional[ProductFilter] = None) -> List[Product]:
        self.reads += 1
        filter = filter or ProductFilter()
        return sorted((p for p in self.products.values() if filter.matches(p)), key=lambda p: p.sku)

    def _check_write(self, entity_id: str) -> None:
        if entity_id in self.fail_writes_for:
            raise ConnectionError(f"write failed for {entity_id}")

    async def save_order(self, order: Order) -> Order:
        self._check_write(order.order_id)
        self.orders[order.order_id] = order
        return order

    async def save_customer(self, customer: Customer) -> Customer:
        self._check_write(customer.customer_id)
        self.customers[customer.customer_id] = customer
        return customer

    async def save_product(self, product: Product) -> Product:
        self._check_write(product.sku)
        self.products[product.sku] = product
        return product

    async def increment_customer_totals(self, customer_id, orders, spent, last_order_date=None) -> None:
        customer = self.customers.get(customer_id)
        if customer is None:
            return
        latest = customer.last_order_date
        if last_order_date is not None and (latest is None or last_order_date > latest):
            latest = last_order_date
        self.customers[customer_id] = customer.model_copy(update={
            "total_orders": customer.total_orders + orders,
            "total_spent": round(customer.total_spent + spent, 2),
            "last_order_date": latest,
        })

    async def increment_product_counters(self, sku, purchases, revenue, sold_at=None) -> None:
        product = self.products.get(sku)
        if product is None:
            return
        analytics = product.analytics.model_copy(update={
            "purchases": product.analytics.purchases + purchases,
            "revenue": round(product.analytics.revenue + revenue, 2),
            "last_sold_at": sold_at or product.analytics.last_sold_at,
        })
        self.products[sku] = product.model_copy(update={"analytics": analytics})

    async def ping(self) -> bool:
        return True


class FailingRecordSource(RecordSource):
    """Every call raises a connection error"""

    def __init__(self, name: str = "primary", error: Optional[Exception] = None):
        self.name = name
        self.error = error or ConnectionError("connection refused")
        self.calls = 0

    def _fail(self):
        self.calls += 1
        raise self.error

    async def query_orders(self, filter=None, window=None):
        self._fail()

    async def query_customers(self, filter=None):
        self._fail()

    async def query_products(self, filter=None):
        self._fail()

    async def save_order(self, order):
        self._fail()

    async def save_customer(self, customer):
        self._fail()

    async def save_product(self, product):
        self._fail()

    async def increment_customer_totals(self, customer_id, orders, spent, last_order_date=None):
        self._fail()

    async def increment_product_counters(self, sku, purchases, revenue, sold_at=None):
        self._fail()

    async def ping(self):
        self._fail()


class SlowRecordSource(InMemoryRecordSource):
    """In-memory source whose reads take `delay` seconds"""

    def __init__(self, delay: float, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay

    async def query_orders(self, filter=None, window=None):
        await asyncio.sleep(self.delay)
        return await super().query_orders(filter, window)

    async def query_customers(self, filter=None):
        await asyncio.sleep(self.delay)
        return await super().query_customers(filter)

    async def ping(self):
        await asyncio.sleep(self.delay)
        return True


class InMemoryAuditSink(AuditSink):
    """Collects entries; `fail_for` resource ids and `fail_summary` raise on append"""

    def __init__(self):
        self.entries: List[AuditLogEntry] = []
        self.fail_for: Set[str] = set()
        self.fail_summary = False

    async def append(self, entry: AuditLogEntry) -> None:
        if entry.resource_id is None and self.fail_summary:
            raise ConnectionError("audit store unavailable")
        if entry.resource_id in self.fail_for:
            raise ConnectionError("audit store unavailable")
        self.entries.append(entry)

    async def list_entries(self, resource_type=None, resource_id=None, limit=100) -> List[AuditLogEntry]:
        matched = [
            e for e in reversed(self.entries)
            if (resource_type is None or e.resource_type == resource_type)
            and (resource_id is None or e.resource_id == resource_id)
        ]
        return matched[:limit]

    def for_resource(self, resource_id: str) -> List[AuditLogEntry]:
        return [e for e in self.entries if e.resource_id == resource_id]

    @property
    def summaries(self) -> List[AuditLogEntry]:
        return [e for e in self.entries if e.resource_id is None]
