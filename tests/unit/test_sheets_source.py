"""
Unit Tests - Spreadsheet Mirror Source
"""
import json

import polars as pl
import pytest

from src.domain.errors import SourceUnavailableError
from src.domain.models import OrderStatus, PaymentStatus
from src.gateway.base import CustomerFilter, OrderFilter
from src.gateway.fallback import RecordStoreGateway, SourceKind
from src.gateway.sheets_source import SheetsMirrorSource

from tests.factories import FailingRecordSource, make_order

ITEMS = json.dumps([
    {"product_id": "P1", "name": "Phone", "sku": "SKU-1", "quantity": 2, "unit_price": 500.0, "category": "electronics"}
])


def write_sheets(path, orders=None, customers=None, products=None):
    orders = orders or [
        {
            "order_id": "O1",
            "customer_id": "C1",
            "items": ITEMS,
            "subtotal": "1000",
            "final_amount": "1000",
            "payment_method": "upi",
            "payment_status": "paid",
            "status": "delivered",
            "order_date": "2026-03-14T12:00:00",
            "shipping_city": "Pune",
            "shipping_state": "Maharashtra",
            "shipping_pincode": "411001",
            "flags": "",
        },
        {
            "order_id": "O2",
            "customer_id": "C2",
            "items": "",
            "subtotal": "250",
            "final_amount": "",
            "payment_method": "cod",
            "payment_status": "pending",
            "status": "pending",
            "order_date": "2026-03-10T09:30:00",
            "shipping_city": "",
            "shipping_state": "",
            "shipping_pincode": "",
            "flags": json.dumps([{"type": "fraud_check", "reason": "velocity", "severity": "high"}]),
        },
    ]
    customers = customers or [
        {"customer_id": "C1", "name": "Asha Rao", "email": "c1@example.com", "registration_date": "2025-01-01T00:00:00", "total_orders": "3"},
        {"customer_id": "C2", "name": "Ravi Iyer", "email": "", "registration_date": "2026-03-01T00:00:00", "total_orders": ""},
    ]
    products = products or [
        {"sku": "SKU-1", "name": "Phone", "category": "electronics", "base_price": "500", "stock": "12", "reserved": "2", "purchases": "7"},
    ]
    pl.DataFrame(orders).write_csv(path / "orders.csv")
    pl.DataFrame(customers).write_csv(path / "customers.csv")
    pl.DataFrame(products).write_csv(path / "products.csv")
    return SheetsMirrorSource(str(path))


class TestReads:
    """Tests for parsing flattened sheet rows"""

    async def test_orders_with_json_cells(self, tmp_path):
        source = write_sheets(tmp_path)

        orders = await source.query_orders()

        assert [o.order_id for o in orders] == ["O2", "O1"]
        o2, o1 = orders
        assert o1.items[0].quantity == 2
        assert o1.payment_status == PaymentStatus.PAID
        assert o1.shipping_address.city == "Pune"
        assert o2.final_amount == 250.0
        assert o2.items == []
        assert o2.flags[0].type == "fraud_check"

    async def test_order_filter_applies(self, tmp_path):
        source = write_sheets(tmp_path)
        orders = await source.query_orders(OrderFilter(statuses=frozenset({OrderStatus.PENDING})))

        assert [o.order_id for o in orders] == ["O2"]

    async def test_customers_blank_cells_use_defaults(self, tmp_path):
        source = write_sheets(tmp_path)

        customers = await source.query_customers()

        assert customers[0].total_orders == 3
        assert customers[1].email is None
        assert customers[1].total_orders == 0
        assert await source.get_customer("C404") is None
        assert (await source.query_customers(CustomerFilter(customer_ids=frozenset({"C2"}))))[0].name == "Ravi Iyer"

    async def test_products(self, tmp_path):
        product = await write_sheets(tmp_path).get_product("SKU-1")

        assert product.pricing.base_price == 500.0
        assert product.inventory.available == 10
        assert product.analytics.purchases == 7

    async def test_malformed_rows_skipped(self, tmp_path):
        orders = [
            {"order_id": "O1", "customer_id": "C1", "subtotal": "100", "final_amount": "100", "order_date": "2026-03-14T12:00:00"},
            {"order_id": "BAD", "customer_id": "C1", "subtotal": "100", "final_amount": "999", "order_date": "2026-03-14T12:00:00"},
            {"order_id": "NODATE", "customer_id": "C1", "subtotal": "100", "final_amount": "100", "order_date": ""},
        ]
        source = write_sheets(tmp_path, orders=orders)

        assert [o.order_id for o in await source.query_orders()] == ["O1"]

    async def test_parquet_sheets(self, tmp_path):
        pl.DataFrame([
            {"customer_id": "C9", "name": "Meera", "registration_date": "2026-01-01T00:00:00", "total_orders": 4},
        ]).write_parquet(tmp_path / "customers.parquet")
        source = SheetsMirrorSource(str(tmp_path), file_format="parquet")

        customers = await source.query_customers()
        assert customers[0].total_orders == 4


class TestReadOnly:
    async def test_writes_raise(self, tmp_path):
        source = write_sheets(tmp_path)

        with pytest.raises(SourceUnavailableError):
            await source.save_order(make_order())
        with pytest.raises(SourceUnavailableError):
            await source.increment_product_counters("SKU-1", 1, 10.0)
        assert source.read_only

    async def test_ping_needs_every_sheet(self, tmp_path):
        source = write_sheets(tmp_path)
        assert await source.ping()

        (tmp_path / "products.csv").unlink()
        with pytest.raises(FileNotFoundError):
            await source.ping()


class TestAsSecondary:
    async def test_mirror_serves_when_primary_down(self, tmp_path):
        gateway = RecordStoreGateway(FailingRecordSource(), write_sheets(tmp_path))

        result = await gateway.query_orders()

        assert result.kind == SourceKind.SECONDARY
        assert len(result.data) == 2

    async def test_missing_mirror_is_unavailable(self, tmp_path):
        gateway = RecordStoreGateway(FailingRecordSource(), SheetsMirrorSource(str(tmp_path / "nowhere")))

        result = await gateway.query_orders()

        assert result.kind == SourceKind.UNAVAILABLE
        assert result.data == []
