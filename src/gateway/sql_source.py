"""
Primary record source backed by the transactional database.

Reads and writes go through SQLAlchemy async sessions. Counter updates are
issued as single `UPDATE ... SET x = x + :delta` statements so concurrent
order completions never overwrite each other.
"""

from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import case, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.database.models import DimCustomer, DimProduct, FactOrder
from src.domain.models import Customer, Order, Product
from src.domain.windows import TimeWindow
from src.gateway.base import (
    CustomerFilter,
    OrderFilter,
    ProductFilter,
    RecordSource,
)

logger = structlog.get_logger(__name__)


def _latest(column, ts: Optional[datetime]):
    """SQL expression keeping the later of the stored value and `ts`"""
    if ts is None:
        return column
    return case((column.is_(None), ts), (column < ts, ts), else_=column)


class SqlRecordSource(RecordSource):
    """
    Record source over fact_orders, dim_customers and dim_products.

    Example:
        source = SqlRecordSource(get_session_factory())
        orders = await source.query_orders(OrderFilter(customer_id="C-1"))
    """

    name = "primary"
    read_only = False

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # --- reads -------------------------------------------------------------

    async def query_orders(
        self,
        filter: Optional[OrderFilter] = None,
        window: Optional[TimeWindow] = None,
    ) -> List[Order]:
        filter = filter or OrderFilter()
        stmt = select(FactOrder)

        if not filter.include_deleted:
            stmt = stmt.where(FactOrder.deleted_at.is_(None))
        if filter.order_ids is not None:
            stmt = stmt.where(FactOrder.order_id.in_(sorted(filter.order_ids)))
        if filter.customer_id is not None:
            stmt = stmt.where(FactOrder.customer_id == filter.customer_id)
        if filter.statuses is not None:
            stmt = stmt.where(FactOrder.status.in_(list(filter.statuses)))
        if filter.payment_statuses is not None:
            stmt = stmt.where(FactOrder.payment_status.in_(list(filter.payment_statuses)))
        if window is not None:
            stmt = stmt.where(FactOrder.order_date >= window.start)
            if window.end_inclusive:
                stmt = stmt.where(FactOrder.order_date <= window.end)
            else:
                stmt = stmt.where(FactOrder.order_date < window.end)

        stmt = stmt.order_by(FactOrder.order_date, FactOrder.order_id)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [row.to_domain() for row in rows]

    async def query_customers(self, filter: Optional[CustomerFilter] = None) -> List[Customer]:
        filter = filter or CustomerFilter()
        stmt = select(DimCustomer)

        if not filter.include_deleted:
            stmt = stmt.where(DimCustomer.deleted_at.is_(None))
        if filter.customer_ids is not None:
            stmt = stmt.where(DimCustomer.customer_id.in_(sorted(filter.customer_ids)))
        if filter.status is not None:
            stmt = stmt.where(DimCustomer.status == filter.status)
        if filter.registered_within is not None:
            window = filter.registered_within
            stmt = stmt.where(DimCustomer.registration_date >= window.start)
            if window.end_inclusive:
                stmt = stmt.where(DimCustomer.registration_date <= window.end)
            else:
                stmt = stmt.where(DimCustomer.registration_date < window.end)

        stmt = stmt.order_by(DimCustomer.customer_id)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [row.to_domain() for row in rows]

    async def query_products(self, filter: Optional[ProductFilter] = None) -> List[Product]:
        filter = filter or ProductFilter()
        stmt = select(DimProduct)

        if not filter.include_deleted:
            stmt = stmt.where(DimProduct.deleted_at.is_(None))
        if filter.skus is not None:
            stmt = stmt.where(DimProduct.sku.in_(sorted(filter.skus)))
        if filter.category is not None:
            stmt = stmt.where(DimProduct.category == filter.category)
        if filter.status is not None:
            stmt = stmt.where(DimProduct.status == filter.status)

        stmt = stmt.order_by(DimProduct.sku)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [row.to_domain() for row in rows]

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._session_factory() as session:
            row = await session.get(FactOrder, order_id)
            if row is None or row.deleted_at is not None:
                return None
            return row.to_domain()

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        async with self._session_factory() as session:
            row = await session.get(DimCustomer, customer_id)
            if row is None or row.deleted_at is not None:
                return None
            return row.to_domain()

    async def get_product(self, sku: str) -> Optional[Product]:
        async with self._session_factory() as session:
            row = await session.get(DimProduct, sku)
            if row is None or row.deleted_at is not None:
                return None
            return row.to_domain()

    # --- writes ------------------------------------------------------------

    async def save_order(self, order: Order) -> Order:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(FactOrder(**FactOrder.column_values(order)))
        return order

    async def save_customer(self, customer: Customer) -> Customer:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(DimCustomer(**DimCustomer.column_values(customer)))
        return customer

    async def save_product(self, product: Product) -> Product:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(DimProduct(**DimProduct.column_values(product)))
        return product

    async def increment_customer_totals(
        self,
        customer_id: str,
        orders: int,
        spent: float,
        last_order_date: Optional[datetime] = None,
    ) -> None:
        stmt = (
            update(DimCustomer)
            .where(DimCustomer.customer_id == customer_id)
            .values(
                total_orders=DimCustomer.total_orders + orders,
                total_spent=DimCustomer.total_spent + spent,
                last_order_date=_latest(DimCustomer.last_order_date, last_order_date),
            )
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
        if result.rowcount == 0:
            logger.warning("Customer totals not updated, customer missing", customer_id=customer_id)

    async def increment_product_counters(
        self,
        sku: str,
        purchases: int,
        revenue: float,
        sold_at: Optional[datetime] = None,
    ) -> None:
        stmt = (
            update(DimProduct)
            .where(DimProduct.sku == sku)
            .values(
                purchases=DimProduct.purchases + purchases,
                revenue=DimProduct.revenue + revenue,
                last_sold_at=_latest(DimProduct.last_sold_at, sold_at),
            )
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
        if result.rowcount == 0:
            logger.warning("Product counters not updated, product missing", sku=sku)

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
