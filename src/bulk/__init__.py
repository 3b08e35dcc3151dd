"""
E-Commerce Back-Office
Bulk Module - batch mutations with per-item isolation and audit trail
"""
from .audit import AuditSink, SqlAuditSink
from .executor import BulkExecutor, BulkOperationResult, run_batch
from .mutations import (
    AddFlag,
    CancelOrder,
    FieldUpdate,
    RefundOrder,
    ResolveFlag,
    SoftDelete,
    StatusChange,
    parse_mutation,
)

__all__ = [
    "AuditSink",
    "SqlAuditSink",
    "BulkExecutor",
    "BulkOperationResult",
    "run_batch",
    "AddFlag",
    "CancelOrder",
    "FieldUpdate",
    "RefundOrder",
    "ResolveFlag",
    "SoftDelete",
    "StatusChange",
    "parse_mutation",
]
