"""
E-Commerce Back-Office
Record Store Gateway - primary store, spreadsheet mirror and fallback
"""
from .base import CustomerFilter, OrderFilter, ProductFilter, RecordSource
from .fallback import RecordStoreGateway, SourceKind, SourceResult
from .sheets_source import SheetsMirrorSource
from .sql_source import SqlRecordSource

__all__ = [
    "CustomerFilter",
    "OrderFilter",
    "ProductFilter",
    "RecordSource",
    "RecordStoreGateway",
    "SourceKind",
    "SourceResult",
    "SheetsMirrorSource",
    "SqlRecordSource",
]
