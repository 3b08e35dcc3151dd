"""
Unit Tests - SQL Record Source and Audit Sink (SQLite)
"""
from datetime import timedelta

import pytest

from src.bulk.audit import SqlAuditSink
from src.domain.flags import add_flag
from src.domain.models import AuditLogEntry, AuditOutcome, OrderStatus, RefundInfo, Severity
from src.domain.orders import refund_order
from src.domain.windows import calculate_windows
from src.gateway.base import CustomerFilter, OrderFilter, ProductFilter

from tests.factories import NOW, make_customer, make_order, make_product


class TestOrders:
    """Tests for order persistence and queries"""

    async def test_save_and_read_back(self, sql_source):
        order = add_flag(make_order("O1", amount=1200.0, city="Pune"), "fraud_check", "velocity", now=NOW)
        await sql_source.save_order(order)

        loaded = await sql_source.get_order("O1")

        assert loaded.final_amount == 1200.0
        assert loaded.items[0].sku == "SKU-1"
        assert loaded.shipping_address.city == "Pune"
        assert loaded.flags[0].type == "fraud_check"
        assert loaded.order_date == order.order_date

    async def test_save_overwrites(self, sql_source):
        order = make_order("O1")
        await sql_source.save_order(order)
        await sql_source.save_order(refund_order(order, amount=250.0, actor="admin", now=NOW))

        loaded = await sql_source.get_order("O1")

        assert loaded.status == OrderStatus.CANCELLED
        assert isinstance(loaded.refund_info, RefundInfo)
        assert loaded.refund_info.amount == 250.0

    async def test_window_and_filters(self, sql_source):
        for order in [
            make_order("O1", "C1", days_ago=1),
            make_order("O2", "C2", days_ago=10, status=OrderStatus.PENDING),
            make_order("O3", "C1", days_ago=45),
        ]:
            await sql_source.save_order(order)

        current, previous = calculate_windows(30, NOW)

        assert [o.order_id for o in await sql_source.query_orders(window=current)] == ["O2", "O1"]
        assert [o.order_id for o in await sql_source.query_orders(window=previous)] == ["O3"]
        assert [o.order_id for o in await sql_source.query_orders(OrderFilter(customer_id="C1"))] == ["O3", "O1"]
        pending = await sql_source.query_orders(OrderFilter(statuses=frozenset({OrderStatus.PENDING})))
        assert [o.order_id for o in pending] == ["O2"]

    async def test_previous_window_excludes_its_end(self, sql_source):
        await sql_source.save_order(make_order("EDGE", order_date=NOW - timedelta(days=30)))
        current, previous = calculate_windows(30, NOW)

        assert [o.order_id for o in await sql_source.query_orders(window=current)] == ["EDGE"]
        assert await sql_source.query_orders(window=previous) == []

    async def test_soft_deleted_hidden(self, sql_source):
        await sql_source.save_order(make_order("O1", deleted_at=NOW))

        assert await sql_source.get_order("O1") is None
        assert await sql_source.query_orders() == []
        assert len(await sql_source.query_orders(OrderFilter(include_deleted=True))) == 1


class TestCustomersAndProducts:
    async def test_customer_round_trip_and_registration_filter(self, sql_source):
        await sql_source.save_customer(make_customer("C1", registered_days_ago=5))
        await sql_source.save_customer(make_customer("C2", registered_days_ago=50))

        current, _ = calculate_windows(30, NOW)
        recent = await sql_source.query_customers(CustomerFilter(registered_within=current))

        assert [c.customer_id for c in recent] == ["C1"]
        assert (await sql_source.get_customer("C2")).email == "c2@example.com"

    async def test_product_filters(self, sql_source):
        await sql_source.save_product(make_product("SKU-1"))
        await sql_source.save_product(make_product("SKU-2", category="books"))

        books = await sql_source.query_products(ProductFilter(category="books"))

        assert [p.sku for p in books] == ["SKU-2"]
        assert (await sql_source.get_product("SKU-1")).inventory.available == 45


class TestIncrements:
    """Counter updates are applied in the database"""

    async def test_customer_totals(self, sql_source):
        await sql_source.save_customer(make_customer("C1"))
        later = NOW - timedelta(days=1)
        earlier = NOW - timedelta(days=5)

        await sql_source.increment_customer_totals("C1", orders=1, spent=500.0, last_order_date=later)
        await sql_source.increment_customer_totals("C1", orders=1, spent=250.5, last_order_date=earlier)

        customer = await sql_source.get_customer("C1")
        assert customer.total_orders == 2
        assert customer.total_spent == pytest.approx(750.5)
        assert customer.last_order_date == later

    async def test_product_counters(self, sql_source):
        await sql_source.save_product(make_product("SKU-1"))

        await sql_source.increment_product_counters("SKU-1", purchases=3, revenue=3000.0, sold_at=NOW)

        product = await sql_source.get_product("SKU-1")
        assert product.analytics.purchases == 13
        assert product.analytics.revenue == pytest.approx(13000.0)
        assert product.analytics.last_sold_at == NOW

    async def test_missing_rows_are_ignored(self, sql_source):
        await sql_source.increment_customer_totals("nobody", orders=1, spent=1.0)
        await sql_source.increment_product_counters("nothing", purchases=1, revenue=1.0)

    async def test_ping(self, sql_source):
        assert await sql_source.ping()


class TestSqlAuditSink:
    async def test_append_and_list_newest_first(self, sqlite_factory):
        sink = SqlAuditSink(sqlite_factory)
        for i, resource_id in enumerate(["C1", "C2", None]):
            await sink.append(AuditLogEntry(
                actor_id="admin",
                action="CUSTOMER_STATUS_CHANGE" if resource_id else "CUSTOMER_STATUS_CHANGE_SUMMARY",
                resource_type="customer",
                resource_id=resource_id,
                changes={"status": {"from": "active", "to": "banned"}},
                severity=Severity.HIGH,
                outcome=AuditOutcome.SUCCESS,
                bulk=True,
                created_at=NOW + timedelta(seconds=i),
            ))

        entries = await sink.list_entries(resource_type="customer")

        assert [e.resource_id for e in entries] == [None, "C2", "C1"]
        assert entries[-1].changes == {"status": {"from": "active", "to": "banned"}}
        assert entries[-1].severity == Severity.HIGH
        assert [e.resource_id for e in await sink.list_entries(resource_id="C1")] == ["C1"]
        assert len(await sink.list_entries(limit=1)) == 1
