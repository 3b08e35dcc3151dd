"""
Spreadsheet mirror record source.

The mirror holds flattened sheet exports (`orders`, `customers`, `products`)
as CSV or Parquet files. Nested parts of a record (line items, flags, refund)
are JSON text cells. Files are read with polars in a worker thread so a slow
disk never blocks the event loop.

The mirror is read-only. Every write raises SourceUnavailableError.
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

import polars as pl
import structlog
from pydantic import ValidationError as PydanticValidationError

from src.domain.errors import SourceUnavailableError
from src.domain.models import (
    Customer,
    Inventory,
    Order,
    Pricing,
    Product,
    ProductAnalytics,
    ShippingAddress,
)
from src.domain.windows import TimeWindow
from src.gateway.base import (
    CustomerFilter,
    OrderFilter,
    ProductFilter,
    RecordSource,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SHEETS = ("orders", "customers", "products")


# =============================================================================
# ROW PARSING
# =============================================================================

def _clean(row: Dict[str, Any]) -> Dict[str, Any]:
    """Blank cells become None"""
    return {
        key: (None if isinstance(value, str) and value.strip() == "" else value)
        for key, value in row.items()
    }


def _json_cell(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (list, dict)):
        return value
    return json.loads(value)


def order_from_row(row: Dict[str, Any]) -> Order:
    row = _clean(row)
    return Order.model_validate({
        "order_id": row["order_id"],
        "customer_id": row["customer_id"],
        "items": _json_cell(row.get("items"), []),
        "subtotal": row.get("subtotal") or 0,
        "tax_amount": row.get("tax_amount") or 0,
        "shipping_charges": row.get("shipping_charges") or 0,
        "discount": row.get("discount") or 0,
        "final_amount": row.get("final_amount"),
        "payment_method": row.get("payment_method") or "cod",
        "payment_status": row.get("payment_status") or "pending",
        "status": row.get("status") or "pending",
        "status_reason": row.get("status_reason"),
        "order_date": row["order_date"],
        "shipping_address": ShippingAddress(
            street=row.get("shipping_street") or "",
            city=row.get("shipping_city") or "",
            state=row.get("shipping_state") or "",
            pincode=str(row.get("shipping_pincode") or ""),
            country=row.get("shipping_country") or "India",
        ),
        "flags": _json_cell(row.get("flags"), []),
        "refund_info": _json_cell(row.get("refund_info"), None),
        "updated_by": row.get("updated_by"),
        "updated_at": row.get("updated_at"),
        "deleted_at": row.get("deleted_at"),
    })


def customer_from_row(row: Dict[str, Any]) -> Customer:
    row = _clean(row)
    values = {key: value for key, value in row.items() if value is not None}
    values["flags"] = _json_cell(row.get("flags"), [])
    return Customer.model_validate(values)


def product_from_row(row: Dict[str, Any]) -> Product:
    row = _clean(row)
    return Product(
        sku=row["sku"],
        name=row["name"],
        category=row["category"],
        subcategory=row.get("subcategory"),
        pricing=Pricing(
            base_price=row.get("base_price") or 0,
            sale_price=row.get("sale_price"),
            tax_rate=row.get("tax_rate") or 0,
        ),
        inventory=Inventory(
            stock=row.get("stock") or 0,
            reserved=row.get("reserved") or 0,
            low_stock_threshold=row.get("low_stock_threshold") or 10,
        ),
        analytics=ProductAnalytics(
            views=row.get("views") or 0,
            purchases=row.get("purchases") or 0,
            revenue=row.get("revenue") or 0,
            last_sold_at=row.get("last_sold_at"),
        ),
        flags=_json_cell(row.get("flags"), []),
        status=row.get("status") or "active",
        updated_by=row.get("updated_by"),
        updated_at=row.get("updated_at"),
        deleted_at=row.get("deleted_at"),
    )


# =============================================================================
# SOURCE
# =============================================================================

class SheetsMirrorSource(RecordSource):
    """
    Read-only record source over spreadsheet exports.

    Example:
        source = SheetsMirrorSource("./data/mirror", file_format="csv")
        customers = await source.query_customers()
    """

    name = "secondary"
    read_only = True

    def __init__(self, path: str, file_format: str = "csv"):
        self.path = Path(path)
        self.file_format = file_format

    def _sheet_path(self, sheet: str) -> Path:
        return self.path / f"{sheet}.{self.file_format}"

    def _read_sheet(self, sheet: str) -> pl.DataFrame:
        """Load one sheet with every column as text"""
        path = self._sheet_path(sheet)
        if self.file_format == "parquet":
            df = pl.read_parquet(path)
            return df.with_columns(pl.all().cast(pl.Utf8))
        return pl.read_csv(path, infer_schema_length=0)

    def _parse_sheet(self, sheet: str, parse: Callable[[Dict[str, Any]], T]) -> List[T]:
        df = self._read_sheet(sheet)
        records: List[T] = []
        skipped = 0
        for row in df.iter_rows(named=True):
            try:
                records.append(parse(row))
            except (PydanticValidationError, ValueError, KeyError) as e:
                skipped += 1
                logger.warning("Skipping malformed mirror row", sheet=sheet, error=str(e))
        if skipped:
            logger.warning("Mirror sheet had malformed rows", sheet=sheet, skipped=skipped, loaded=len(records))
        return records

    async def _load(self, sheet: str, parse: Callable[[Dict[str, Any]], T]) -> List[T]:
        return await asyncio.to_thread(self._parse_sheet, sheet, parse)

    # --- reads -------------------------------------------------------------

    async def query_orders(
        self,
        filter: Optional[OrderFilter] = None,
        window: Optional[TimeWindow] = None,
    ) -> List[Order]:
        filter = filter or OrderFilter()
        orders = await self._load("orders", order_from_row)
        matched = [order for order in orders if filter.matches(order, window)]
        return sorted(matched, key=lambda o: (o.order_date, o.order_id))

    async def query_customers(self, filter: Optional[CustomerFilter] = None) -> List[Customer]:
        filter = filter or CustomerFilter()
        customers = await self._load("customers", customer_from_row)
        return sorted((c for c in customers if filter.matches(c)), key=lambda c: c.customer_id)

    async def query_products(self, filter: Optional[ProductFilter] = None) -> List[Product]:
        filter = filter or ProductFilter()
        products = await self._load("products", product_from_row)
        return sorted((p for p in products if filter.matches(p)), key=lambda p: p.sku)

    # --- writes ------------------------------------------------------------

    def _read_only(self, operation: str):
        raise SourceUnavailableError(
            "Spreadsheet mirror is read-only",
            {"operation": operation, "source": self.name},
        )

    async def save_order(self, order: Order) -> Order:
        self._read_only("save_order")

    async def save_customer(self, customer: Customer) -> Customer:
        self._read_only("save_customer")

    async def save_product(self, product: Product) -> Product:
        self._read_only("save_product")

    async def increment_customer_totals(
        self,
        customer_id: str,
        orders: int,
        spent: float,
        last_order_date: Optional[datetime] = None,
    ) -> None:
        self._read_only("increment_customer_totals")

    async def increment_product_counters(
        self,
        sku: str,
        purchases: int,
        revenue: float,
        sold_at: Optional[datetime] = None,
    ) -> None:
        self._read_only("increment_product_counters")

    async def ping(self) -> bool:
        missing = [sheet for sheet in SHEETS if not self._sheet_path(sheet).exists()]
        if missing:
            raise FileNotFoundError(f"Mirror sheets missing: {', '.join(missing)}")
        return True
