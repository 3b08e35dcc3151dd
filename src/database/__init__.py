"""
Database Module - primary store tables and engine lifecycle
"""
from .connection import (
    build_session_factory,
    close_database,
    get_session_factory,
    init_database,
)
from .models import AuditLog, Base, DimCustomer, DimProduct, FactOrder

__all__ = [
    "build_session_factory",
    "close_database",
    "get_session_factory",
    "init_database",
    "AuditLog",
    "Base",
    "DimCustomer",
    "DimProduct",
    "FactOrder",
]
