"""
Record Source Interface

Uniform read/write contract over Orders, Customers and Products. The
aggregator and the bulk executor only see this interface, never the store
behind it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Optional

from src.domain.models import (
    Customer,
    CustomerStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    Product,
    ProductStatus,
)
from src.domain.windows import TimeWindow


# =============================================================================
# FILTERS
# =============================================================================

@dataclass(frozen=True)
class OrderFilter:
    """Order query filter; soft-deleted orders are excluded unless asked for"""
    order_ids: Optional[FrozenSet[str]] = None
    customer_id: Optional[str] = None
    statuses: Optional[FrozenSet[OrderStatus]] = None
    payment_statuses: Optional[FrozenSet[PaymentStatus]] = None
    include_deleted: bool = False

    def matches(self, order: Order, window: Optional[TimeWindow] = None) -> bool:
        if not self.include_deleted and order.is_deleted:
            return False
        if self.order_ids is not None and order.order_id not in self.order_ids:
            return False
        if self.customer_id is not None and order.customer_id != self.customer_id:
            return False
        if self.statuses is not None and order.status not in self.statuses:
            return False
        if self.payment_statuses is not None and order.payment_status not in self.payment_statuses:
            return False
        if window is not None and not window.contains(order.order_date):
            return False
        return True


@dataclass(frozen=True)
class CustomerFilter:
    customer_ids: Optional[FrozenSet[str]] = None
    registered_within: Optional[TimeWindow] = None
    status: Optional[CustomerStatus] = None
    include_deleted: bool = False

    def matches(self, customer: Customer) -> bool:
        if not self.include_deleted and customer.is_deleted:
            return False
        if self.customer_ids is not None and customer.customer_id not in self.customer_ids:
            return False
        if self.status is not None and customer.status != self.status:
            return False
        if self.registered_within is not None and not self.registered_within.contains(customer.registration_date):
            return False
        return True


@dataclass(frozen=True)
class ProductFilter:
    skus: Optional[FrozenSet[str]] = None
    category: Optional[str] = None
    status: Optional[ProductStatus] = None
    include_deleted: bool = False

    def matches(self, product: Product) -> bool:
        if not self.include_deleted and product.is_deleted:
            return False
        if self.skus is not None and product.sku not in self.skus:
            return False
        if self.category is not None and product.category != self.category:
            return False
        if self.status is not None and product.status != self.status:
            return False
        return True


# =============================================================================
# SOURCE INTERFACE
# =============================================================================

class RecordSource(ABC):
    """Abstract base class for record stores"""

    name: str = "source"
    read_only: bool = False

    # --- reads -------------------------------------------------------------

    @abstractmethod
    async def query_orders(
        self,
        filter: Optional[OrderFilter] = None,
        window: Optional[TimeWindow] = None,
    ) -> List[Order]:
        """
        Orders matching `filter` whose order date falls in `window`.

        Raises:
            Any error from the underlying store; the gateway decides what
            a failure means.
        """
        pass

    @abstractmethod
    async def query_customers(self, filter: Optional[CustomerFilter] = None) -> List[Customer]:
        pass

    @abstractmethod
    async def query_products(self, filter: Optional[ProductFilter] = None) -> List[Product]:
        pass

    async def get_order(self, order_id: str) -> Optional[Order]:
        orders = await self.query_orders(OrderFilter(order_ids=frozenset({order_id})))
        return orders[0] if orders else None

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        customers = await self.query_customers(CustomerFilter(customer_ids=frozenset({customer_id})))
        return customers[0] if customers else None

    async def get_product(self, sku: str) -> Optional[Product]:
        products = await self.query_products(ProductFilter(skus=frozenset({sku})))
        return products[0] if products else None

    # --- writes ------------------------------------------------------------

    @abstractmethod
    async def save_order(self, order: Order) -> Order:
        pass

    @abstractmethod
    async def save_customer(self, customer: Customer) -> Customer:
        pass

    @abstractmethod
    async def save_product(self, product: Product) -> Product:
        pass

    @abstractmethod
    async def increment_customer_totals(
        self,
        customer_id: str,
        orders: int,
        spent: float,
        last_order_date: Optional[datetime] = None,
    ) -> None:
        """Apply an atomic delta to a customer's denormalized totals"""
        pass

    @abstractmethod
    async def increment_product_counters(
        self,
        sku: str,
        purchases: int,
        revenue: float,
        sold_at: Optional[datetime] = None,
    ) -> None:
        """Apply an atomic delta to a product's analytics counters"""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Cheap reachability check"""
        pass
